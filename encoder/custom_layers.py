# encoder/custom_layers.py
"""
Recurrent and feed-forward building blocks shared by encoder and decoder.

Every layer is described by a frozen config dataclass that is validated once
when it is created. Layers fetch their parameters from a ComputationGraph by
name, so constructing a layer against a different graph binds it to that
graph's parameter values.
"""
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

import torch
import torch.nn.functional as F

from models.graph import ComputationGraph, inits

CELL_TYPES = ("gru", "lstm")

ACTIVATIONS: Dict[str, Callable[[torch.Tensor], torch.Tensor]] = {
    "tanh": torch.tanh,
    "relu": F.relu,
    "sigmoid": torch.sigmoid,
    "linear": lambda x: x,
}


def layer_norm(x: torch.Tensor, gamma: torch.Tensor, beta: Optional[torch.Tensor] = None,
               eps: float = 1e-6) -> torch.Tensor:
    out = F.layer_norm(x, (x.size(-1),), eps=eps) * gamma
    return out + beta if beta is not None else out


def weighted_average(x: torch.Tensor, mask: torch.Tensor) -> torch.Tensor:
    """Mean over the time axis of [batch, time, dim] ignoring padded positions."""
    mask = mask.unsqueeze(-1)
    total = (x * mask).sum(dim=1)
    count = mask.sum(dim=1).clamp(min=1.0)
    return total / count


def dropout_mask(shape: Sequence[int], p: float, device: torch.device) -> torch.Tensor:
    """Scaled Bernoulli keep-mask, sampled once and reused across time steps."""
    return F.dropout(torch.ones(tuple(shape), device=device), p=p, training=True)


def word_dropout(embeddings: torch.Tensor, p: float, training: bool) -> torch.Tensor:
    """Drop whole word vectors of a [batch, time, dim] tensor."""
    if not training or p <= 0:
        return embeddings
    batch, time, _ = embeddings.shape
    return embeddings * dropout_mask((batch, time, 1), p, embeddings.device)


# Configs ------------------------------------------------------------------

@dataclass(frozen=True)
class DenseConfig:
    prefix: str
    dim: int
    activation: str = "tanh"
    layer_normalization: bool = False

    def __post_init__(self):
        if self.activation not in ACTIVATIONS:
            raise ValueError(f"Unknown activation '{self.activation}' for {self.prefix}")
        if self.dim <= 0:
            raise ValueError(f"Dense layer {self.prefix} needs a positive dimension")


@dataclass(frozen=True)
class OutputConfig:
    prefix: str
    dim: int
    # Name of an embedding matrix [dim, dim_input] whose transpose is reused
    tied_prefix: Optional[str] = None

    def __post_init__(self):
        if self.dim <= 0:
            raise ValueError(f"Output layer {self.prefix} needs a positive dimension")


@dataclass(frozen=True)
class CellConfig:
    cell_type: str
    prefix: str
    dim_input: int
    dim_state: int
    dropout: float = 0.0
    layer_normalization: bool = False
    # Transition cells only see the state of the previous cell in the stack
    transition: bool = False

    def __post_init__(self):
        if self.cell_type not in CELL_TYPES:
            raise ValueError(f"Unknown cell type '{self.cell_type}'")
        if self.dim_state <= 0:
            raise ValueError(f"Cell {self.prefix} needs a positive state dimension")
        if not self.transition and self.dim_input <= 0:
            raise ValueError(f"Cell {self.prefix} takes input but has dim_input={self.dim_input}")
        if not 0.0 <= self.dropout < 1.0:
            raise ValueError(f"Dropout for {self.prefix} must be in [0, 1)")


@dataclass(frozen=True)
class StackedCellConfig:
    cells: Tuple[CellConfig, ...]

    def __post_init__(self):
        if not self.cells:
            raise ValueError("A stacked cell needs at least one cell")
        if self.cells[0].transition:
            raise ValueError(f"First cell {self.cells[0].prefix} of a stack must take input")
        dims = {c.dim_state for c in self.cells}
        if len(dims) != 1:
            raise ValueError(f"Cells of a stack must share one state dimension, got {sorted(dims)}")

    @property
    def dim_state(self) -> int:
        return self.cells[0].dim_state


@dataclass(frozen=True)
class RNNConfig:
    layers: Tuple[StackedCellConfig, ...]
    skip: bool = False

    def __post_init__(self):
        if not self.layers:
            raise ValueError("An RNN needs at least one layer")

    @property
    def dim_output(self) -> int:
        return self.layers[-1].dim_state


# Feed-forward layers ------------------------------------------------------

class Dense:
    """Affine layer over the concatenation of its inputs"""

    def __init__(self, graph: ComputationGraph, config: DenseConfig, dims_in: Sequence[int]):
        self.config = config
        prefix = config.prefix
        self.W = graph.param(f"{prefix}_W", (sum(dims_in), config.dim), inits.glorot_uniform)
        self.b = graph.param(f"{prefix}_b", (1, config.dim), inits.zeros)
        self.gamma = None
        if config.layer_normalization:
            self.gamma = graph.param(f"{prefix}_ln_s", (1, config.dim), inits.ones)
        self.activation = ACTIVATIONS[config.activation]

    def apply(self, inputs: Sequence[torch.Tensor]) -> torch.Tensor:
        x = torch.cat(list(inputs), dim=-1) if len(inputs) > 1 else inputs[0]
        out = x @ self.W
        if self.gamma is not None:
            out = layer_norm(out, self.gamma, self.b)
        else:
            out = out + self.b
        return self.activation(out)


class Output:
    """Projection to vocabulary logits, optionally tied to an embedding matrix"""

    def __init__(self, graph: ComputationGraph, config: OutputConfig, dim_in: int):
        self.config = config
        if config.tied_prefix:
            self.W = graph.param(config.tied_prefix, (config.dim, dim_in), inits.glorot_uniform).t()
        else:
            self.W = graph.param(f"{config.prefix}_W", (dim_in, config.dim), inits.glorot_uniform)
        self.b = graph.param(f"{config.prefix}_b", (1, config.dim), inits.zeros)

    def apply(self, inputs: Sequence[torch.Tensor]) -> torch.Tensor:
        x = torch.cat(list(inputs), dim=-1) if len(inputs) > 1 else inputs[0]
        return x @ self.W + self.b


class MLP:
    """Chain of layers; the first one consumes a list of inputs"""

    def __init__(self, layers: List):
        self.layers = layers

    def apply(self, inputs: Sequence[torch.Tensor]) -> torch.Tensor:
        out = self.layers[0].apply(inputs)
        for layer in self.layers[1:]:
            out = layer.apply([out])
        return out


# Recurrent cells ----------------------------------------------------------

class CellState(NamedTuple):
    output: torch.Tensor  # [batch, dim_state]
    cell: torch.Tensor    # LSTM memory; mirrors output for GRU

    def select(self, index: torch.Tensor) -> "CellState":
        return CellState(self.output.index_select(0, index), self.cell.index_select(0, index))


def zero_state(batch: int, dim: int, device: torch.device) -> CellState:
    zeros = torch.zeros(batch, dim, device=device)
    return CellState(zeros, zeros)


class _Cell:
    num_gates = 1

    def __init__(self, graph: ComputationGraph, config: CellConfig):
        self.config = config
        prefix, dim = config.prefix, config.dim_state
        width = self.num_gates * dim
        self.W = None
        if not config.transition:
            self.W = graph.param(f"{prefix}_W", (config.dim_input, width), inits.glorot_uniform)
        self.U = graph.param(f"{prefix}_U", (dim, width), inits.glorot_uniform)
        self.b = graph.param(f"{prefix}_b", (1, width), inits.zeros)
        self.gamma_input = self.gamma_state = None
        if config.layer_normalization:
            if self.W is not None:
                self.gamma_input = graph.param(f"{prefix}_gamma1", (1, width), inits.ones)
            self.gamma_state = graph.param(f"{prefix}_gamma2", (1, width), inits.ones)

    @property
    def takes_input(self) -> bool:
        return self.W is not None

    def apply_input(self, x: torch.Tensor) -> Optional[torch.Tensor]:
        """Project a whole [batch, time, dim_input] sequence at once."""
        if self.W is None:
            return None
        xw = x @ self.W
        if self.gamma_input is not None:
            xw = layer_norm(xw, self.gamma_input)
        return xw

    def _project_state(self, h: torch.Tensor) -> torch.Tensor:
        hu = h @ self.U
        if self.gamma_state is not None:
            hu = layer_norm(hu, self.gamma_state)
        return hu

    def apply_state(self, xw: Optional[torch.Tensor], state: CellState,
                    mask: Optional[torch.Tensor] = None,
                    state_dropout: Optional[torch.Tensor] = None) -> CellState:
        raise NotImplementedError


class GRUCell(_Cell):
    num_gates = 3

    def apply_state(self, xw, state, mask=None, state_dropout=None):
        h = state.output
        h_in = h * state_dropout if state_dropout is not None else h
        hu = self._project_state(h_in)
        hu_r, hu_z, hu_h = hu.chunk(3, dim=-1)
        b_r, b_z, b_h = self.b.chunk(3, dim=-1)
        if xw is not None:
            xw_r, xw_z, xw_h = xw.chunk(3, dim=-1)
        else:
            xw_r = xw_z = xw_h = 0.0

        r = torch.sigmoid(xw_r + hu_r + b_r)
        z = torch.sigmoid(xw_z + hu_z + b_z)
        h_tilde = torch.tanh(xw_h + r * hu_h + b_h)
        new_h = (1.0 - z) * h_tilde + z * h

        if mask is not None:
            new_h = mask * new_h + (1.0 - mask) * h
        return CellState(new_h, new_h)


class LSTMCell(_Cell):
    num_gates = 4

    def apply_state(self, xw, state, mask=None, state_dropout=None):
        h, c = state.output, state.cell
        h_in = h * state_dropout if state_dropout is not None else h
        gates = self._project_state(h_in) + self.b
        if xw is not None:
            gates = gates + xw
        i, f, o, c_tilde = gates.chunk(4, dim=-1)

        new_c = torch.sigmoid(f) * c + torch.sigmoid(i) * torch.tanh(c_tilde)
        new_h = torch.sigmoid(o) * torch.tanh(new_c)

        if mask is not None:
            new_c = mask * new_c + (1.0 - mask) * c
            new_h = mask * new_h + (1.0 - mask) * h
        return CellState(new_h, new_c)


def make_cell(graph: ComputationGraph, config: CellConfig) -> _Cell:
    if config.cell_type == "gru":
        return GRUCell(graph, config)
    return LSTMCell(graph, config)


class StackedCell:
    """Deep-transition cell: one time step runs every cell of the stack in turn"""

    def __init__(self, graph: ComputationGraph, config: StackedCellConfig):
        self.config = config
        self.cells = [make_cell(graph, c) for c in config.cells]

    @property
    def dim_state(self) -> int:
        return self.config.dim_state

    def sample_masks(self, batch: int, device: torch.device, training: bool):
        """Variational dropout masks for inputs and states, one pair per cell."""
        input_masks, state_masks = [], []
        for cell in self.cells:
            p = cell.config.dropout
            active = training and p > 0
            input_masks.append(dropout_mask((batch, 1, cell.config.dim_input), p, device)
                               if active and cell.takes_input else None)
            state_masks.append(dropout_mask((batch, cell.config.dim_state), p, device)
                               if active else None)
        return input_masks, state_masks

    def apply_input(self, x: torch.Tensor, input_masks: Sequence[Optional[torch.Tensor]]):
        projected = []
        for cell, m in zip(self.cells, input_masks):
            projected.append(cell.apply_input(x * m if m is not None else x))
        return projected

    def apply_state(self, xws: Sequence[Optional[torch.Tensor]], state: CellState,
                    mask: Optional[torch.Tensor], state_masks: Sequence[Optional[torch.Tensor]]) -> CellState:
        for cell, xw, m in zip(self.cells, xws, state_masks):
            state = cell.apply_state(xw, state, mask, m)
        return state


class RNN:
    """Multi-layer recurrent network over [batch, time, dim] inputs"""

    def __init__(self, graph: ComputationGraph, config: RNNConfig, training: bool = False):
        self.config = config
        self.training = training
        self.layers = [StackedCell(graph, layer) for layer in config.layers]
        self._last_states: List[CellState] = []

    def transduce(self, inputs: torch.Tensor, states: Optional[Sequence[CellState]] = None,
                  mask: Optional[torch.Tensor] = None, reverse: bool = False) -> torch.Tensor:
        """
        Run all layers over the sequence.

        Args:
            inputs: [batch, time, dim_input]
            states: Initial state per layer (zeros if None)
            mask: [batch, time] padding mask; padded steps keep the previous state
            reverse: Process time steps right to left

        Returns:
            Output of the last layer, [batch, time, dim_state]
        """
        batch, time, _ = inputs.shape
        x = inputs
        last_states = []
        for index, layer in enumerate(self.layers):
            state = states[index] if states else zero_state(batch, layer.dim_state, inputs.device)
            input_masks, state_masks = layer.sample_masks(batch, inputs.device, self.training)
            xws = layer.apply_input(x, input_masks)

            outputs = []
            steps = range(time - 1, -1, -1) if reverse else range(time)
            for t in steps:
                xws_t = [xw[:, t] if xw is not None else None for xw in xws]
                mask_t = mask[:, t].unsqueeze(-1) if mask is not None else None
                state = layer.apply_state(xws_t, state, mask_t, state_masks)
                outputs.append(state.output)
            if reverse:
                outputs.reverse()

            out = torch.stack(outputs, dim=1)
            if self.config.skip and index > 0 and out.shape == x.shape:
                out = out + x
            x = out
            last_states.append(state)

        self._last_states = last_states
        return x

    def last_cell_states(self) -> List[CellState]:
        """Final state of every layer from the last ``transduce`` call."""
        return list(self._last_states)

# models/graph.py
"""
Computation graphs: named parameter stores bound to a device and a workspace.

A graph owns its parameters. Sub-networks are stateless builders that look
parameters up by name, so two graphs of the same architecture can hold
different parameter values while sharing one builder.

The workspace is the transient memory used while a graph executes. Several
graphs may share one workspace as long as they never execute at the same
time; ``Workspace.acquire`` enforces this.
"""
import logging
import math
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Sequence, Tuple, Union

import torch
import torch.nn as nn

from utils.exceptions import ModelError, ResourceError

logger = logging.getLogger(__name__)

Shape = Tuple[int, ...]
Initializer = Callable[[Shape, torch.device], torch.Tensor]


class inits:
    """Parameter initializers"""

    @staticmethod
    def glorot_uniform(shape: Shape, device: torch.device) -> torch.Tensor:
        fan_in, fan_out = (shape[0], shape[-1]) if len(shape) > 1 else (1, shape[0])
        scale = math.sqrt(6.0 / (fan_in + fan_out))
        return torch.empty(shape, device=device).uniform_(-scale, scale)

    @staticmethod
    def zeros(shape: Shape, device: torch.device) -> torch.Tensor:
        return torch.zeros(shape, device=device)

    @staticmethod
    def ones(shape: Shape, device: torch.device) -> torch.Tensor:
        return torch.ones(shape, device=device)

    @staticmethod
    def normal(shape: Shape, device: torch.device, std: float = 0.02) -> torch.Tensor:
        return torch.empty(shape, device=device).normal_(mean=0.0, std=std)


class Workspace:
    """Transient computation memory shared by graphs that never run concurrently"""

    def __init__(self, device: torch.device, size_mb: int):
        self.device = device
        self.size_mb = size_mb
        self._owner: Optional["ComputationGraph"] = None
        self._depth = 0
        self.acquisitions = 0

    @property
    def owner(self) -> Optional["ComputationGraph"]:
        return self._owner

    @property
    def in_use(self) -> bool:
        return self._owner is not None

    @contextmanager
    def acquire(self, graph: "ComputationGraph") -> Iterator["Workspace"]:
        """Hold the workspace for one graph; re-entrant for the same graph."""
        if self._owner is not None and self._owner is not graph:
            raise ResourceError(
                f"Workspace is in use by graph '{self._owner.name}'; "
                f"graph '{graph.name}' cannot execute concurrently")
        self._owner = graph
        self._depth += 1
        self.acquisitions += 1
        try:
            yield self
        finally:
            self._depth -= 1
            if self._depth == 0:
                self._owner = None


class ComputationGraph(nn.Module):
    """Mutable container of named model parameters plus a workspace binding"""

    def __init__(self, name: str = "graph", device: Union[str, torch.device, None] = None):
        super().__init__()
        self.name = name
        self.params = nn.ParameterDict()
        self._device = torch.device(device) if device is not None else torch.device('cpu')
        self.workspace: Optional[Workspace] = None
        self.inference = False
        self.frozen = False

    # Device and workspace -------------------------------------------------

    @property
    def device(self) -> torch.device:
        return self._device

    def reserve_workspace_mb(self, size_mb: int) -> Workspace:
        """Create a workspace owned by this graph."""
        self.workspace = Workspace(self.device, size_mb)
        return self.workspace

    def reuse_workspace(self, other: "ComputationGraph"):
        """Borrow another graph's workspace instead of allocating a new one."""
        if other.workspace is None:
            raise ResourceError(f"Graph '{other.name}' has no workspace to share")
        if other.device != self.device:
            raise ResourceError(
                f"Cannot share workspace across devices ({other.device} vs {self.device})")
        self.workspace = other.workspace

    def execution(self):
        """Context in which this graph may use its workspace."""
        if self.workspace is None:
            self.reserve_workspace_mb(0)
        return self.workspace.acquire(self)

    # Parameters -------------------------------------------------------------

    def param(self, name: str, shape: Sequence[int], init: Initializer = inits.glorot_uniform) -> nn.Parameter:
        """Return the named parameter, creating it with ``init`` if missing."""
        shape = tuple(int(d) for d in shape)
        if name in self.params:
            existing = self.params[name]
            if tuple(existing.shape) != shape:
                raise ModelError(
                    f"Parameter {name} in graph '{self.name}' has shape {tuple(existing.shape)}, "
                    f"expected {shape}")
            return existing

        if self.frozen:
            raise ModelError(f"Parameter {name} is missing from frozen graph '{self.name}'")

        parameter = nn.Parameter(init(shape, self.device))
        self.params[name] = parameter
        return parameter

    def get(self, name: str) -> Optional[nn.Parameter]:
        return self.params[name] if name in self.params else None

    def has_params(self) -> bool:
        return len(self.params) > 0

    def param_names(self):
        return list(self.params.keys())

    def num_parameters(self) -> int:
        return sum(p.numel() for p in self.params.values())

    def load_params(self, tensors: Dict[str, torch.Tensor]):
        """Create or overwrite parameters from a name-to-tensor mapping."""
        if self.frozen:
            raise ModelError(f"Cannot load parameters into frozen graph '{self.name}'")
        for name, value in tensors.items():
            value = torch.as_tensor(value).to(device=self.device, dtype=torch.float32)
            if name in self.params:
                with torch.no_grad():
                    self.params[name].copy_(value)
            else:
                self.params[name] = nn.Parameter(value.clone())

    def copy_params(self, other: "ComputationGraph"):
        """Make this graph's parameters value-copies of another graph's."""
        if self.frozen:
            raise ModelError(f"Cannot copy parameters into frozen graph '{self.name}'")
        with torch.no_grad():
            for name, source in other.params.items():
                value = source.detach().to(self.device).clone()
                if name in self.params:
                    self.params[name].copy_(value)
                else:
                    self.params[name] = nn.Parameter(value, requires_grad=True)

    def freeze(self):
        """Mark the graph read-only: no gradients, no new or loaded parameters."""
        self.frozen = True
        for p in self.params.values():
            p.requires_grad_(False)

    # Execution --------------------------------------------------------------

    def set_inference(self, inference: bool):
        """Toggle inference mode (disables dropout in sub-networks)."""
        self.inference = inference
        self.train(not inference)

    def backward(self, cost: torch.Tensor):
        """Accumulate fresh gradients of ``cost`` into this graph's parameters."""
        if self.frozen:
            raise ModelError(f"Graph '{self.name}' is frozen and cannot receive gradients")
        self.zero_grad(set_to_none=True)
        cost.backward()

    def clear(self):
        """Drop transient per-step state left from the previous use."""
        self.zero_grad(set_to_none=True)

    def __repr__(self):
        return (f"ComputationGraph(name={self.name!r}, device={self.device}, "
                f"params={len(self.params)}, inference={self.inference}, frozen={self.frozen})")

# config/schemas.py
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Dict, Optional, Any, Sequence
import yaml
from pathlib import Path
import logging

from utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CELL_TYPES = ("gru", "lstm")
COST_TYPES = ("ce-mean", "ce-mean-words", "ce-sum")
OPTIMIZERS = ("sgd", "adam", "adagrad")


class ModelConfig(BaseModel):
    """Schema for the 'model' section (RNN sequence-to-sequence architecture)."""
    type: str = "s2s"
    dim_emb: int = Field(512, gt=0)
    dim_rnn: int = Field(1024, gt=0)
    enc_cell: str = "gru"
    enc_depth: int = Field(1, ge=1)
    enc_cell_depth: int = Field(1, ge=1)
    dec_cell: str = "gru"
    dec_depth: int = Field(1, ge=1)
    dec_cell_base_depth: int = Field(2, ge=1)
    dec_cell_high_depth: int = Field(1, ge=1)
    layer_normalization: bool = False
    skip: bool = False
    tied_embeddings: bool = False
    tied_embeddings_src: bool = False
    tied_embeddings_all: bool = False
    dropout_rnn: float = Field(0.0, ge=0.0, lt=1.0)
    dropout_src: float = Field(0.0, ge=0.0, lt=1.0)
    dropout_trg: float = Field(0.0, ge=0.0, lt=1.0)
    # Filled from the vocabularies when left empty
    dim_vocabs: List[int] = Field(default_factory=list)

    @field_validator("type")
    def validate_type(cls, v):
        if v != "s2s":
            raise ValueError(f"Only the 's2s' model type is supported. Got: {v}")
        return v

    @field_validator("enc_cell", "dec_cell")
    def validate_cell(cls, v):
        if v not in CELL_TYPES:
            raise ValueError(f"Cell type must be one of: {', '.join(CELL_TYPES)}. Got: {v}")
        return v

    @field_validator("dim_vocabs")
    def validate_dim_vocabs(cls, v):
        if any(d < 0 for d in v):
            raise ValueError("Vocabulary dimensions must be non-negative")
        return v

    def with_vocab_dims(self, sizes: Sequence[int]) -> "ModelConfig":
        """Copy with every unset (missing or 0) vocabulary dimension taken from ``sizes``."""
        dims = []
        for i, size in enumerate(sizes):
            configured = self.dim_vocabs[i] if i < len(self.dim_vocabs) else 0
            dims.append(configured if configured > 0 else size)
        return self.model_copy(update={"dim_vocabs": dims})


class TrainingConfig(BaseModel):
    """Schema for the 'training' section (per-sample adaptation episodes)."""
    learn_rate: float = Field(0.0001, gt=0)
    optimizer: str = "adam"
    optimizer_params: List[float] = Field(default_factory=list)
    clip_norm: float = Field(1.0, ge=0.0)
    lr_decay: float = Field(0.0, ge=0.0, le=1.0)
    lr_decay_strategy: str = "epoch"
    lr_decay_start: int = Field(1, ge=0)
    after_epochs: int = Field(1, ge=0)
    after_batches: int = Field(0, ge=0)
    mini_batch: int = Field(64, gt=0)
    max_length: int = Field(1000, gt=0)
    max_length_crop: bool = False
    cost_type: str = "ce-mean"
    label_smoothing: float = Field(0.0, ge=0.0, lt=1.0)
    seed: Optional[int] = None

    @field_validator("optimizer")
    def validate_optimizer(cls, v):
        if v not in OPTIMIZERS:
            raise ValueError(f"Optimizer must be one of: {', '.join(OPTIMIZERS)}. Got: {v}")
        return v

    @field_validator("lr_decay_strategy")
    def validate_decay_strategy(cls, v):
        if v not in ("epoch", "batches"):
            raise ValueError(f"lr_decay_strategy must be 'epoch' or 'batches'. Got: {v}")
        return v

    @field_validator("cost_type")
    def validate_cost_type(cls, v):
        if v not in COST_TYPES:
            raise ValueError(f"Cost type must be one of: {', '.join(COST_TYPES)}. Got: {v}")
        return v

    @model_validator(mode="after")
    def check_stopping_criterion(self):
        """An episode needs at least one stopping criterion."""
        if self.after_epochs == 0 and self.after_batches == 0:
            raise ValueError("Either after_epochs or after_batches must be greater than zero")
        return self


class TranslationConfig(BaseModel):
    """Schema for the 'translation' section (beam search and output)."""
    beam_size: int = Field(12, gt=0)
    normalize: float = Field(0.0, ge=0.0)
    word_penalty: float = 0.0
    n_best: bool = False
    max_length_factor: float = Field(3.0, gt=0)
    allow_unk: bool = False
    mini_batch: int = Field(1, gt=0)


class DataConfig(BaseModel):
    """Schema for the 'data' section: model, vocabularies and streams."""
    model: str = "model.pt"
    vocabs: List[str] = Field(default_factory=list)
    train_sets: List[str] = Field(default_factory=list)
    input: List[str] = Field(default_factory=lambda: ["stdin"])
    output: str = "stdout"


class HardwareConfig(BaseModel):
    """Schema for device and workspace settings."""
    device: str = "auto"
    workspace: int = Field(512, gt=0, description="Workspace size in MB")

    @field_validator("device")
    def validate_device(cls, v):
        """Validate device setting."""
        if v in ("auto", "cpu", "cuda"):
            return v
        if v.startswith("cuda:") and v[len("cuda:"):].isdigit():
            return v
        raise ValueError(f"Device must be one of: auto, cpu, cuda, cuda:N. Got: {v}")


class LoggingConfig(BaseModel):
    """Schema for logging settings."""
    log_dir: str = "logs"
    log_level: str = "INFO"
    log_to_file: bool = False

    @field_validator("log_level")
    def validate_level(cls, v):
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v


class RootConfig(BaseModel):
    """The root configuration model."""
    model_config = ConfigDict(extra="allow")

    model: ModelConfig = Field(default_factory=ModelConfig)
    training: TrainingConfig = Field(default_factory=TrainingConfig)
    translation: TranslationConfig = Field(default_factory=TranslationConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    hardware: HardwareConfig = Field(default_factory=HardwareConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def check_consistency(config: RootConfig, require_streams: bool = True) -> None:
    """Cross-field checks that pydantic validators cannot express per section.

    Raises:
        ConfigurationError: if the configuration cannot drive an adaptation run
    """
    data = config.data
    if len(data.vocabs) < 2:
        raise ConfigurationError(
            "At least one source and one target vocabulary are required",
            {"vocabs": data.vocabs})

    dim_vocabs = config.model.dim_vocabs
    if dim_vocabs and len(dim_vocabs) != len(data.vocabs):
        raise ConfigurationError(
            f"Number of vocabulary dimensions ({len(dim_vocabs)}) does not match "
            f"number of vocabularies ({len(data.vocabs)})",
            {"dim_vocabs": dim_vocabs, "vocabs": data.vocabs})

    if config.model.tied_embeddings_all or config.model.tied_embeddings_src:
        if len(data.vocabs) != 2:
            raise ConfigurationError("Tied source/target embeddings require exactly two vocabularies")

    if not require_streams:
        return

    if len(data.train_sets) != len(data.vocabs):
        raise ConfigurationError(
            f"Number of training sets ({len(data.train_sets)}) does not match "
            f"number of vocabularies ({len(data.vocabs)})",
            {"train_sets": data.train_sets, "vocabs": data.vocabs})

    if len(data.input) != len(data.vocabs) - 1:
        raise ConfigurationError(
            f"Number of input streams ({len(data.input)}) must equal the number "
            f"of source vocabularies ({len(data.vocabs) - 1})",
            {"input": data.input})


def _parse_override_value(raw: str) -> Any:
    """Parse a CLI override value with YAML scalar/list rules."""
    return yaml.safe_load(raw)

def apply_overrides(config_data: Dict[str, Any], overrides: Sequence[str]) -> Dict[str, Any]:
    """Apply dotted ``section.key=value`` overrides to raw config data."""
    for item in overrides:
        if '=' not in item:
            raise ConfigurationError(f"Override must look like section.key=value, got: {item}")
        key_path, raw = item.split('=', 1)
        keys = key_path.strip().split('.')
        node = config_data
        for key in keys[:-1]:
            node = node.setdefault(key, {})
            if not isinstance(node, dict):
                raise ConfigurationError(f"Cannot override nested key below scalar: {key_path}")
        node[keys[-1]] = _parse_override_value(raw)
    return config_data

def load_config(config_path: Optional[str] = None, overrides: Sequence[str] = ()) -> RootConfig:
    """
    Load and validate configuration from YAML file.

    Args:
        config_path: Path to the configuration file (defaults are used if None)
        overrides: Dotted ``section.key=value`` strings applied on top

    Returns:
        Validated RootConfig instance
    """
    config_data: Dict[str, Any] = {}

    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"YAML parsing error in {config_path}: {e}")
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Top level of {config_path} must be a mapping")

    apply_overrides(config_data, overrides)

    try:
        config = RootConfig(**config_data)
    except ValueError as e:
        # pydantic.ValidationError is a ValueError
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    if config_path:
        logger.info(f"Successfully loaded configuration from {config_path}")
    return config

"""Inference engine — sessions, sampling parameters, quantization."""
from .config import (
    GenerateConfig,
    InferenceParameters,
    RunContext,
    SessionParameters,
)
from .errors import (
    ConfigError,
    ContextFullError,
    EndOfTextError,
    InferenceError,
    LlmCliError,
    ModelLoadError,
    PromptConfigError,
    QuantizeError,
    SnapshotError,
    SnapshotMismatchError,
    TokenizationFailedError,
    UserCallbackError,
)
from .models import ElementType, Model, QuantizeTarget
from .progress import (
    Finished,
    HyperparametersLoaded,
    QuantizeProgress,
    TensorLoading,
    TensorQuantized,
    TensorQuantizing,
    TensorSkipped,
    describe_progress,
)
from .session import InferenceSession

__all__ = [
    # Core controller (lazy import to avoid circular deps)
    "SessionController",
    # Config
    "GenerateConfig",
    "InferenceParameters",
    "RunContext",
    "SessionParameters",
    # Models
    "ElementType",
    "InferenceSession",
    "Model",
    "QuantizeTarget",
    # Progress
    "QuantizeProgress",
    "HyperparametersLoaded",
    "TensorLoading",
    "TensorQuantizing",
    "TensorQuantized",
    "TensorSkipped",
    "Finished",
    "describe_progress",
    # Reference engine and transforms (lazy import)
    "BigramModel",
    "load_model",
    "quantize",
    "load_yaml_config",
    # Errors
    "ConfigError",
    "ContextFullError",
    "EndOfTextError",
    "InferenceError",
    "LlmCliError",
    "ModelLoadError",
    "PromptConfigError",
    "QuantizeError",
    "SnapshotError",
    "SnapshotMismatchError",
    "TokenizationFailedError",
    "UserCallbackError",
]


def __getattr__(name: str):
    if name == "SessionController":
        from .controller import SessionController
        return SessionController
    if name == "BigramModel":
        from .demo_model import BigramModel
        return BigramModel
    if name == "load_model":
        from .demo_model import load_model
        return load_model
    if name == "quantize":
        from .quantize import quantize
        return quantize
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

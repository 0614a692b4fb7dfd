"""Quorum: resilient deep research and multi-model consensus."""

__version__ = "0.1.0"

from quorum.catalog import MODELS, get_model, models_for_level
from quorum.checkpoint import Checkpoint, CheckpointError, CheckpointStore, FileCheckpointStore
from quorum.config import Settings
from quorum.consensus import ConsensusEngine
from quorum.log import LogContext, configure_logging, get_logger
from quorum.orchestrator import Orchestrator
from quorum.recovery import JobRecovery, RecoveredJob, RecoveryReport
from quorum.types import (
    ConfigurationError,
    ConsensusResult,
    Err,
    ErrorCategory,
    Model,
    ModelResponse,
    Ok,
    QuorumError,
    Usage,
)

__all__ = [
    "MODELS",
    "Checkpoint",
    "CheckpointError",
    "CheckpointStore",
    "ConfigurationError",
    "ConsensusEngine",
    "ConsensusResult",
    "Err",
    "ErrorCategory",
    "FileCheckpointStore",
    "JobRecovery",
    "LogContext",
    "Model",
    "ModelResponse",
    "Ok",
    "Orchestrator",
    "QuorumError",
    "RecoveredJob",
    "RecoveryReport",
    "Settings",
    "Usage",
    "configure_logging",
    "get_logger",
    "get_model",
    "models_for_level",
]

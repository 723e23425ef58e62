"""
patchmend - Patch Reconciliation Engine

Repairs unified-diff patches that no longer apply cleanly to an evolved source
tree: works out what changed between the patch's assumptions and the current
files, and drives a bounded regenerate-and-validate loop with an LLM.
"""

__version__ = "0.1.0"

from .applier import ApplicationEngine, calculate_complexity
from .config import (
    ReconcileSettings,
    get_optional_env_var,
    get_required_env_var,
    load_environment_variables,
)
from .context_builder import ContextBuilder, describe_failure
from .diff_parser import parse_patch, reattach_preamble
from .exceptions import (
    ApplyConflictError,
    ApplyToolError,
    AttemptsExhaustedError,
    CheckoutStateError,
    ComplexityTooHighError,
    ConfigurationError,
    FixGenerationError,
    GitOperationError,
    IncompleteCandidateError,
    LLMError,
    MalformedPatchError,
    PatchError,
    PatchMendError,
    PristineReadError,
    RepositoryError,
    ValidationError,
)
from .models import (
    AppliedClean,
    AppliedWithOffset,
    ApplyResult,
    CandidateFix,
    FileOutcome,
    OffsetCondition,
    ParsedPatch,
    PatchContext,
    PatchFailure,
    PristineSnapshot,
    ReconcileResult,
    ReconcileStatus,
    Rejected,
)
from .orchestrator import FixOrchestrator, ReconcileState
from .rate_limit import IntervalGate

__all__ = [
    "AppliedClean",
    "AppliedWithOffset",
    "ApplicationEngine",
    "ApplyConflictError",
    "ApplyResult",
    "ApplyToolError",
    "AttemptsExhaustedError",
    "CandidateFix",
    "CheckoutStateError",
    "ComplexityTooHighError",
    "ConfigurationError",
    "ContextBuilder",
    "FileOutcome",
    "FixGenerationError",
    "FixOrchestrator",
    "GitOperationError",
    "IncompleteCandidateError",
    "IntervalGate",
    "LLMError",
    "MalformedPatchError",
    "OffsetCondition",
    "ParsedPatch",
    "PatchContext",
    "PatchError",
    "PatchFailure",
    "PatchMendError",
    "PristineReadError",
    "PristineSnapshot",
    "ReconcileResult",
    "ReconcileSettings",
    "ReconcileState",
    "ReconcileStatus",
    "Rejected",
    "RepositoryError",
    "ValidationError",
    "__version__",
    "calculate_complexity",
    "describe_failure",
    "get_optional_env_var",
    "get_required_env_var",
    "load_environment_variables",
    "parse_patch",
    "reattach_preamble",
]

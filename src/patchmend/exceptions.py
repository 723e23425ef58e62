"""
Custom exceptions for patchmend.
"""

from typing import Any


class PatchMendError(Exception):
    """Base exception for all patchmend errors."""

    pass


class ConfigurationError(PatchMendError):
    """Raised when there's an issue with configuration."""

    pass


class RepositoryError(PatchMendError):
    """Raised when there's an issue with repository operations."""

    pass


class GitOperationError(RepositoryError):
    """Raised when git operations fail."""

    pass


class ApplyToolError(GitOperationError):
    """Raised when git apply fails for a reason not attributable to any file."""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class CheckoutStateError(RepositoryError):
    """Raised when the checkout cannot be returned to its pristine state."""

    def __init__(self, message: str, paths: list[str] | None = None):
        super().__init__(message)
        self.paths = paths or []


class PatchError(PatchMendError):
    """Raised when there's an issue with patch operations."""

    pass


class MalformedPatchError(PatchError):
    """Raised when patch text has no recognizable file boundaries."""

    pass


class PristineReadError(PatchError):
    """Raised when files referenced by a patch cannot be read before apply."""

    def __init__(self, message: str, paths: list[str], snapshot: Any = None):
        super().__init__(message)
        self.paths = paths
        self.snapshot = snapshot


class ApplyConflictError(PatchError):
    """Raised when a file could not be applied; carries the Rejected outcome."""

    def __init__(self, path: str, outcome: Any, apply_result: Any = None):
        super().__init__(f"Patch does not apply to {path}")
        self.path = path
        self.outcome = outcome
        self.apply_result = apply_result


class IncompleteCandidateError(PatchError):
    """Raised when a regenerated patch leaves out files of the original patch."""

    def __init__(self, missing: list[str]):
        super().__init__(
            f"Candidate patch is missing files from the original patch: {', '.join(missing)}"
        )
        self.missing = missing


class ComplexityTooHighError(PatchError):
    """Raised when a patch's conflicts exceed the configured complexity threshold."""

    def __init__(self, complexity: int, threshold: int):
        super().__init__(
            f"Patch complexity ({complexity}) exceeds threshold ({threshold})"
        )
        self.complexity = complexity
        self.threshold = threshold


class AttemptsExhaustedError(PatchError):
    """Raised when the attempt budget is spent without a valid candidate."""

    def __init__(
        self,
        attempts: int,
        last_failure_signal: str | None,
        last_candidate: str | None,
        last_attempt: Any = None,
        cost: float = 0.0,
    ):
        super().__init__(f"Failed to fix patch after {attempts} attempts")
        self.attempts = attempts
        self.last_failure_signal = last_failure_signal
        self.last_candidate = last_candidate
        self.last_attempt = last_attempt
        self.cost = cost


class LLMError(PatchMendError):
    """Raised when there's an issue with LLM operations."""

    pass


class FixGenerationError(LLMError):
    """Raised when the fix generator fails or returns unusable text."""

    def __init__(self, message: str, cost: float = 0.0):
        super().__init__(message)
        self.cost = cost


class ValidationError(PatchMendError):
    """Raised when a candidate applied cleanly but failed validation."""

    pass

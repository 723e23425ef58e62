"""
Validators run against a candidate patch once it has applied cleanly.
"""

import contextlib
import logging
import os
import shlex
import signal
import subprocess
from pathlib import Path
from typing import Protocol

from .constants import DEFAULT_VALIDATE_COMMAND, DEFAULT_VALIDATOR_TIMEOUT, MAX_DRIFT_RATIO
from .diff_parser import count_changed_lines
from .models import PatchContext, ValidationOutcome
from .utils import tail_lines

logger = logging.getLogger(__name__)


class Validator(Protocol):
    def validate(
        self, repo_dir: Path, candidate: str, context: PatchContext
    ) -> ValidationOutcome: ...


class NoopValidator:
    """Accepts every candidate."""

    def validate(
        self, repo_dir: Path, candidate: str, context: PatchContext
    ) -> ValidationOutcome:
        return ValidationOutcome(passed=True)


class CommandValidator:
    """Runs a build or test command in the checkout with the candidate applied."""

    def __init__(
        self,
        command: str = DEFAULT_VALIDATE_COMMAND,
        timeout: float = DEFAULT_VALIDATOR_TIMEOUT,
    ):
        self.command = command
        self.timeout = timeout

    def validate(
        self, repo_dir: Path, candidate: str, context: PatchContext
    ) -> ValidationOutcome:
        logger.info("Running validation command '%s' in %s", self.command, repo_dir)
        try:
            # Own session, so a timeout can kill everything the build started
            process = subprocess.Popen(
                shlex.split(self.command),
                cwd=repo_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                start_new_session=True,
            )
        except OSError as e:
            return ValidationOutcome(
                passed=False,
                diagnostic=f"Validation command '{self.command}' could not be run: {e}",
            )

        try:
            output, _ = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            _kill_process_group(process)
            process.communicate()
            return ValidationOutcome(
                passed=False,
                diagnostic=f"Validation command '{self.command}' timed out after {self.timeout}s",
            )

        if process.returncode != 0:
            return ValidationOutcome(
                passed=False,
                diagnostic=(
                    f"Validation command '{self.command}' failed "
                    f"(exit code {process.returncode}):\n{tail_lines(output or '')}"
                ),
            )
        return ValidationOutcome(passed=True)


def _kill_process_group(process: subprocess.Popen) -> None:
    logger.warning("Killing validation process group %d", process.pid)
    with contextlib.suppress(ProcessLookupError):
        os.killpg(process.pid, signal.SIGKILL)


class SemanticDriftValidator:
    """
    Rejects candidates that change far more lines than the original patch.

    A regenerated patch that adds or removes many more lines than the original
    has usually drifted from the original intent.
    """

    def __init__(self, max_ratio: float = MAX_DRIFT_RATIO):
        self.max_ratio = max_ratio

    def validate(
        self, repo_dir: Path, candidate: str, context: PatchContext
    ) -> ValidationOutcome:
        original_changes = count_changed_lines(context.original_patch)
        candidate_changes = count_changed_lines(candidate)
        limit = int(original_changes * self.max_ratio)
        if original_changes and candidate_changes > limit:
            return ValidationOutcome(
                passed=False,
                diagnostic=(
                    f"Semantic drift: candidate changes {candidate_changes} lines, "
                    f"original changes {original_changes} (limit {limit})"
                ),
            )
        return ValidationOutcome(passed=True)


class CompositeValidator:
    """Runs validators in order and stops at the first failure."""

    def __init__(self, *validators: Validator):
        self.validators = validators

    def validate(
        self, repo_dir: Path, candidate: str, context: PatchContext
    ) -> ValidationOutcome:
        for validator in self.validators:
            outcome = validator.validate(repo_dir, candidate, context)
            if not outcome.passed:
                logger.warning("%s failed: %s", type(validator).__name__, outcome.diagnostic)
                return outcome
        return ValidationOutcome(passed=True)

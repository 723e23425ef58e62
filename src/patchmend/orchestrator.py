"""
Retry loop that drives a rejected patch towards a validated replacement.

The orchestrator owns the checkout for the duration of one reconcile() call:
every apply starts from a reverted, verified tree and every context is built
from the pristine snapshot, so no attempt can see another attempt's leftovers.
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Protocol

from .applier import ApplicationEngine, calculate_complexity
from .constants import (
    DEFAULT_COMPLEXITY_THRESHOLD,
    DEFAULT_GENERATOR_TIMEOUT,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_VALIDATOR_TIMEOUT,
)
from .context_builder import ContextBuilder, describe_failure
from .diff_parser import missing_paths, parse_patch, reattach_preamble
from .exceptions import (
    ApplyConflictError,
    ApplyToolError,
    AttemptsExhaustedError,
    ComplexityTooHighError,
    ConfigurationError,
    FixGenerationError,
    IncompleteCandidateError,
    MalformedPatchError,
    ValidationError,
)
from .models import (
    ApplyResult,
    AttemptResult,
    CandidateFix,
    ParsedPatch,
    PatchContext,
    PristineSnapshot,
    ReconcileResult,
    ReconcileStatus,
    Rejected,
)
from .rate_limit import IntervalGate
from .utils import tail_lines
from .validator import Validator

logger = logging.getLogger(__name__)


class ReconcileState(str, Enum):
    INIT = "init"
    CONTEXT_BUILT = "context_built"
    AWAITING_CANDIDATE = "awaiting_candidate"
    CANDIDATE_APPLIED = "candidate_applied"
    VALIDATED = "validated"
    SUCCESS = "success"
    RETRY_CONTEXT_BUILT = "retry_context_built"
    EXHAUSTED = "exhausted"


class FixGenerator(Protocol):
    def generate(self, context: PatchContext) -> CandidateFix: ...


def _tool_failure_result(parsed: ParsedPatch, error: ApplyToolError) -> ApplyResult:
    """Treat a patch git could not process at all as rejected in every file."""
    diagnostic = tail_lines(error.output or str(error))
    return ApplyResult(
        outcomes={
            patch_file.path: Rejected(
                rejected_fragments=tuple(hunk.text for hunk in patch_file.hunks),
                diagnostics=(diagnostic,),
            )
            for patch_file in parsed.files
        },
        output=error.output,
        return_code=1,
    )


class FixOrchestrator:
    """Runs the bounded apply / generate / validate loop for one patch."""

    def __init__(
        self,
        engine: ApplicationEngine,
        builder: ContextBuilder,
        generator: FixGenerator,
        validator: Validator,
        gate: IntervalGate,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        generator_timeout: float = DEFAULT_GENERATOR_TIMEOUT,
        validator_timeout: float = DEFAULT_VALIDATOR_TIMEOUT,
        complexity_threshold: int | None = DEFAULT_COMPLEXITY_THRESHOLD,
    ):
        if max_attempts < 1:
            raise ConfigurationError("max_attempts must be a positive integer")
        self.engine = engine
        self.builder = builder
        self.generator = generator
        self.validator = validator
        self.gate = gate
        self.max_attempts = max_attempts
        self.generator_timeout = generator_timeout
        self.validator_timeout = validator_timeout
        self.complexity_threshold = complexity_threshold
        self.state = ReconcileState.INIT
        self.transitions: list[ReconcileState] = []

    def _enter(self, state: ReconcileState) -> None:
        logger.debug("State %s -> %s", self.state.value, state.value)
        self.state = state
        self.transitions.append(state)

    def _revert(self, repo_dir: Path, snapshot: PristineSnapshot) -> None:
        # revert() verifies the tree and raises CheckoutStateError if it differs
        self.engine.revert(repo_dir, snapshot)

    async def _generate(self, context: PatchContext) -> CandidateFix:
        async with self.gate:
            return await asyncio.wait_for(
                asyncio.to_thread(self.generator.generate, context),
                timeout=self.generator_timeout,
            )

    async def _check_candidate(
        self, repo_dir: Path, candidate: str, context: PatchContext
    ) -> None:
        task = asyncio.ensure_future(
            asyncio.to_thread(self.validator.validate, repo_dir, candidate, context)
        )
        try:
            outcome = await asyncio.wait_for(
                asyncio.shield(task), timeout=self.validator_timeout
            )
        except asyncio.TimeoutError as e:
            # The next revert must not race a validator still writing to the checkout
            logger.warning(
                "Validation timed out after %ss, waiting for it to stop",
                self.validator_timeout,
            )
            await asyncio.wait([task])
            if not task.cancelled() and task.exception() is not None:
                logger.warning("Timed out validator failed: %s", task.exception())
            raise ValidationError(
                f"Validation timed out after {self.validator_timeout}s"
            ) from e
        if not outcome.passed:
            raise ValidationError(outcome.diagnostic or "Validation failed")

    def _apply_candidate(
        self, candidate: str, repo_dir: Path, snapshot: PristineSnapshot
    ) -> ApplyResult:
        result, _ = self.engine.apply(candidate, repo_dir, snapshot)
        if result.has_rejections:
            path = result.rejected_paths[0]
            raise ApplyConflictError(path, result.outcomes[path], result)
        return result

    def _apply(
        self, patch_text: str, parsed: ParsedPatch, repo_dir: Path, snapshot: PristineSnapshot
    ) -> ApplyResult:
        try:
            result, _ = self.engine.apply(patch_text, repo_dir, snapshot)
        except ApplyToolError as e:
            logger.warning("git apply could not process the patch: %s", e)
            return _tool_failure_result(parsed, e)
        return result

    async def reconcile(self, patch_text: str, repo_dir: Path) -> ReconcileResult:
        """
        Apply a patch, regenerating it until it applies and validates.

        On success the final patch is left applied in the checkout. On any
        failure after the first apply the checkout is reverted to its
        pristine state before the error propagates.

        Args:
            patch_text: Patch to reconcile
            repo_dir: Path to the repository checkout

        Returns:
            The reconcile result; ``attempts`` is 0 when the original patch
            applied without rejections

        Raises:
            MalformedPatchError: If the patch cannot be parsed (nothing is applied)
            PristineReadError: If a touched file cannot be read (nothing is applied)
            ComplexityTooHighError: If the conflicts exceed the complexity threshold
            AttemptsExhaustedError: If no candidate applied and validated within
                the attempt budget
            CheckoutStateError: If the checkout could not be returned to its
                pristine state
        """
        self.state = ReconcileState.INIT
        self.transitions = [ReconcileState.INIT]

        parsed = parse_patch(patch_text)
        snapshot = self.engine.capture_snapshot(parsed, repo_dir)
        initial = self._apply(patch_text, parsed, repo_dir, snapshot)

        if not initial.has_rejections:
            self._enter(ReconcileState.SUCCESS)
            offsets = initial.offset_conditions()
            for condition in offsets:
                logger.info(
                    "%s applied with offset %+d lines",
                    condition.path,
                    condition.outcome.offset_lines,
                )
            return ReconcileResult(
                status=(
                    ReconcileStatus.APPLIED_WITH_OFFSET
                    if offsets
                    else ReconcileStatus.APPLIED_CLEAN
                ),
                patch_text=patch_text,
                attempts=0,
                initial_outcomes=initial.outcomes,
            )

        complexity = calculate_complexity(initial)
        logger.info(
            "Patch has conflicts in %s (complexity %d)",
            ", ".join(initial.rejected_paths),
            complexity,
        )
        threshold = self.complexity_threshold
        if threshold is not None and complexity > threshold:
            self._revert(repo_dir, snapshot)
            raise ComplexityTooHighError(complexity, threshold)

        self._revert(repo_dir, snapshot)
        context = self.builder.build(parsed, initial, snapshot, attempt=1)
        self._enter(ReconcileState.CONTEXT_BUILT)

        signal: str | None = None
        last_candidate: str | None = None
        last_attempt: AttemptResult | None = None
        cost = 0.0

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                self._enter(ReconcileState.RETRY_CONTEXT_BUILT)
            logger.info("Fix attempt %d/%d", attempt, self.max_attempts)
            self._revert(repo_dir, snapshot)
            self._enter(ReconcileState.AWAITING_CANDIDATE)

            try:
                candidate = await self._generate(context)
            except (FixGenerationError, asyncio.TimeoutError) as e:
                if isinstance(e, FixGenerationError):
                    cost += e.cost
                signal = f"Fix generation failed: {str(e) or 'timed out'}"
                logger.warning("%s", signal)
                last_attempt = AttemptResult(attempt, False, False, signal)
                context = self.builder.with_failure(context, signal, attempt + 1)
                continue

            cost += candidate.cost
            candidate_text = reattach_preamble(candidate.patch, parsed)
            last_candidate = candidate_text

            self._revert(repo_dir, snapshot)
            try:
                candidate_parsed = parse_patch(candidate_text)
                missing = missing_paths(parsed, candidate_parsed)
                if missing:
                    raise IncompleteCandidateError(missing)
                self._apply_candidate(candidate_text, repo_dir, snapshot)
            except IncompleteCandidateError as e:
                signal = str(e)
                logger.warning("%s", signal)
                last_attempt = AttemptResult(attempt, False, False, signal)
                context = self.builder.with_failure(context, signal, attempt + 1)
                continue
            except (MalformedPatchError, ApplyToolError) as e:
                signal = tail_lines(getattr(e, "output", "") or str(e))
                logger.warning("Candidate could not be applied: %s", e)
                last_attempt = AttemptResult(attempt, False, False, signal)
                self._revert(repo_dir, snapshot)
                context = self.builder.with_failure(context, signal, attempt + 1)
                continue
            except ApplyConflictError as e:
                self._enter(ReconcileState.CANDIDATE_APPLIED)
                signal = describe_failure(e.apply_result)
                logger.warning("Candidate rejected in %s", ", ".join(e.apply_result.rejected_paths))
                last_attempt = AttemptResult(attempt, False, False, signal)
                self._revert(repo_dir, snapshot)
                context = self.builder.build(
                    parsed,
                    e.apply_result,
                    snapshot,
                    attempt=attempt + 1,
                    last_failure_signal=signal,
                    applied=candidate_parsed,
                )
                continue
            self._enter(ReconcileState.CANDIDATE_APPLIED)

            try:
                await self._check_candidate(repo_dir, candidate_text, context)
            except ValidationError as e:
                self._enter(ReconcileState.VALIDATED)
                signal = str(e)
                logger.warning("Candidate failed validation: %s", signal.splitlines()[0])
                last_attempt = AttemptResult(attempt, True, False, signal)
                context = self.builder.with_failure(context, signal, attempt + 1)
                continue
            self._enter(ReconcileState.VALIDATED)

            self._enter(ReconcileState.SUCCESS)
            logger.info("Candidate applied and validated on attempt %d", attempt)
            return ReconcileResult(
                status=ReconcileStatus.FIXED,
                patch_text=candidate_text,
                attempts=attempt,
                initial_outcomes=initial.outcomes,
                last_attempt=AttemptResult(attempt, True, True),
                cost=cost,
            )

        self._revert(repo_dir, snapshot)
        self._enter(ReconcileState.EXHAUSTED)
        logger.error("Giving up after %d attempts", self.max_attempts)
        raise AttemptsExhaustedError(
            self.max_attempts, signal, last_candidate, last_attempt=last_attempt, cost=cost
        )

"""
Context construction for the fix generator.

Everything here reads from a PristineSnapshot, never from the working tree,
so the context describes the checkout as it was before any apply attempt.
"""

import dataclasses
import difflib
import logging

from .constants import (
    CLEAN_NOTE,
    DEFAULT_CLEAN_RADIUS,
    DEFAULT_CONTEXT_RADIUS,
    DEFAULT_MATCH_SLACK,
    OFFSET_NOTE,
    REJECTED_NOTE,
)
from .diff_parser import parse_hunk_header
from .models import (
    AppliedClean,
    AppliedWithOffset,
    ApplyResult,
    Difference,
    DifferenceKind,
    Excerpt,
    ExpectedVsActual,
    FileContext,
    FileOutcome,
    ParsedPatch,
    PatchContext,
    PatchFile,
    PristineSnapshot,
    Rejected,
    RejectedHunk,
)

logger = logging.getLogger(__name__)


def window_bounds(line: int, radius: int, length: int) -> tuple[int, int]:
    """0-based, half-open window of ``radius`` lines around ``line``."""
    return max(0, line - radius), min(length, line + radius)


def merge_windows(windows: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Merge overlapping or touching windows, sorted by start."""
    merged: list[tuple[int, int]] = []
    for start, end in sorted(windows):
        if end <= start:
            continue
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def fragment_sides(fragment: str) -> tuple[list[str], list[str]]:
    """
    Split a hunk fragment into the lines it expects to find.

    Returns:
        Tuple of (expected, anchors): expected holds context and removal lines
        in order, anchors holds the context lines only
    """
    expected: list[str] = []
    anchors: list[str] = []
    for line in fragment.rstrip("\n").split("\n")[1:]:
        if line.startswith("+") or line.startswith("\\"):
            continue
        if line.startswith("-"):
            expected.append(line[1:])
        else:
            # Context line; a bare empty line counts as an empty context line
            expected.append(line[1:])
            anchors.append(line[1:])
    return expected, anchors


def find_best_match(
    file_lines: list[str], expected: list[str], expected_index: int
) -> tuple[int | None, int]:
    """
    Find where a hunk's expected lines best line up with the file.

    Every start position is scored by the number of lines that are equal
    ignoring surrounding whitespace; ties go to the position closest to where
    the hunk expected to be.

    Returns:
        Tuple of (0-based start or None when nothing matched, score)
    """
    if not expected or not file_lines:
        return None, 0

    best_start: int | None = None
    best_score = 0
    best_distance = 0
    last_start = max(len(file_lines) - len(expected), 0)
    stripped = [line.strip() for line in expected]

    for start in range(last_start + 1):
        score = 0
        for i, line in enumerate(stripped):
            if start + i < len(file_lines) and file_lines[start + i].strip() == line:
                score += 1
        if score == 0:
            continue
        distance = abs(start - expected_index)
        if score > best_score or (score == best_score and distance < best_distance):
            best_start, best_score, best_distance = start, score, distance

    return best_start, best_score


def _classify_pair(expected: str, actual: str) -> DifferenceKind:
    if expected.rstrip() == actual.rstrip():
        return DifferenceKind.TRAILING_WHITESPACE
    if "".join(expected.split()) == "".join(actual.split()):
        return DifferenceKind.WHITESPACE
    return DifferenceKind.CONTENT


def compare_lines(
    expected: list[str],
    actual: list[str],
    expected_start: int,
    actual_start: int,
) -> list[Difference]:
    """
    Label every difference between expected and actual lines.

    Line numbers in the result are 1-based file positions derived from
    ``expected_start`` and ``actual_start``.
    """
    differences: list[Difference] = []
    if len(expected) != len(actual):
        differences.append(
            Difference(
                DifferenceKind.LINE_COUNT,
                f"expected {len(expected)} lines, found {len(actual)}",
            )
        )

    matcher = difflib.SequenceMatcher(a=expected, b=actual, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        for k in range(max(i2 - i1, j2 - j1)):
            e = expected[i1 + k] if i1 + k < i2 else None
            a = actual[j1 + k] if j1 + k < j2 else None
            e_line = expected_start + i1 + k if e is not None else None
            a_line = actual_start + j1 + k if a is not None else None

            if e is not None and a is not None:
                kind = _classify_pair(e, a)
                if kind is DifferenceKind.TRAILING_WHITESPACE:
                    message = f"line {a_line} differs only in trailing whitespace"
                elif kind is DifferenceKind.WHITESPACE:
                    message = f"line {a_line} differs only in whitespace"
                else:
                    message = f"expected {e!r} at line {e_line}, found {a!r}"
            elif e is not None:
                kind = DifferenceKind.BLANK_LINE if not e.strip() else DifferenceKind.CONTENT
                if kind is DifferenceKind.BLANK_LINE:
                    message = f"expected blank line (line {e_line}) is absent"
                else:
                    message = f"expected line {e_line} {e!r} is absent"
            else:
                kind = DifferenceKind.BLANK_LINE if not a.strip() else DifferenceKind.CONTENT
                if kind is DifferenceKind.BLANK_LINE:
                    message = f"unexpected blank line at line {a_line}"
                else:
                    message = f"unexpected line {a_line} {a!r}"
            differences.append(Difference(kind, message, e_line, a_line))
    return differences


class ContextBuilder:
    """Builds PatchContext values from apply outcomes and a pristine snapshot."""

    def __init__(
        self,
        radius: int = DEFAULT_CONTEXT_RADIUS,
        clean_radius: int = DEFAULT_CLEAN_RADIUS,
        slack: int = DEFAULT_MATCH_SLACK,
    ):
        self.radius = radius
        self.clean_radius = clean_radius
        self.slack = slack

    def _excerpts(
        self, file_lines: list[str], centers: list[int], radius: int
    ) -> tuple[Excerpt, ...]:
        windows = [window_bounds(center, radius, len(file_lines)) for center in centers]
        return tuple(
            Excerpt(start_line=start + 1, lines=tuple(file_lines[start:end]))
            for start, end in merge_windows(windows)
        )

    def compare_fragment(
        self, fragment: str, file_lines: list[str], exists: bool = True
    ) -> tuple[int, ExpectedVsActual]:
        """
        Compare what a rejected fragment expected with the pristine file.

        Returns:
            Tuple of (1-based line the fragment expected, comparison)
        """
        header = parse_hunk_header(fragment.split("\n", 1)[0])
        expected_line = header[0] if header else 1
        expected, anchors = fragment_sides(fragment)

        if not exists:
            return expected_line, ExpectedVsActual(
                expected=tuple(expected),
                anchors=tuple(anchors),
                actual=(),
                expected_start=expected_line,
                actual_start=None,
                differences=(
                    Difference(DifferenceKind.CONTENT, "file does not exist in the checkout"),
                ),
            )

        expected_index = max(expected_line - 1, 0)
        start, score = find_best_match(file_lines, expected, expected_index)

        if start is None:
            lo, hi = window_bounds(expected_index, len(expected), len(file_lines))
            return expected_line, ExpectedVsActual(
                expected=tuple(expected),
                anchors=tuple(anchors),
                actual=tuple(file_lines[lo:hi]),
                expected_start=expected_line,
                actual_start=None,
                differences=(
                    Difference(
                        DifferenceKind.CONTENT,
                        f"none of the {len(expected)} expected lines were found in the file",
                        expected_line,
                    ),
                ),
            )

        actual = file_lines[start : start + len(expected) + self.slack]
        opcodes = difflib.SequenceMatcher(a=expected, b=actual, autojunk=False).get_opcodes()
        if opcodes and opcodes[-1][0] == "insert":
            # Slack lines past the end of the match are not part of it
            actual = actual[: opcodes[-1][3]]

        differences = compare_lines(expected, actual, expected_line, start + 1)
        logger.debug(
            "Fragment expected at line %d best matches line %d (%d/%d lines)",
            expected_line,
            start + 1,
            score,
            len(expected),
        )
        return expected_line, ExpectedVsActual(
            expected=tuple(expected),
            anchors=tuple(anchors),
            actual=tuple(actual),
            expected_start=expected_line,
            actual_start=start + 1,
            differences=tuple(differences),
        )

    def _rejected_context(
        self, path: str, outcome: Rejected, snapshot: PristineSnapshot
    ) -> tuple[FileContext, list[RejectedHunk]]:
        file_lines = snapshot.lines(path)
        exists = path in snapshot.files
        rejected_hunks = []
        centers = []
        for index, fragment in enumerate(outcome.rejected_fragments, start=1):
            expected_line, comparison = self.compare_fragment(fragment, file_lines, exists)
            rejected_hunks.append(
                RejectedHunk(
                    path=path,
                    index=index,
                    fragment=fragment,
                    expected_line=expected_line,
                    comparison=comparison,
                )
            )
            first = (comparison.actual_start or expected_line) - 1
            centers.append(first)
            centers.append(first + max(len(comparison.actual), 1) - 1)

        context = FileContext(
            path=path,
            outcome=outcome,
            excerpts=self._excerpts(file_lines, centers, self.radius),
            note=REJECTED_NOTE,
        )
        return context, rejected_hunks

    def _offset_context(
        self,
        path: str,
        outcome: AppliedWithOffset,
        patch_file: PatchFile | None,
        snapshot: PristineSnapshot,
    ) -> FileContext:
        file_lines = snapshot.lines(path)
        centers = [line - 1 for line in outcome.applied_at]
        if not centers and patch_file is not None:
            centers = [h.old_start - 1 + outcome.offset_lines for h in patch_file.hunks]
        return FileContext(
            path=path,
            outcome=outcome,
            excerpts=self._excerpts(file_lines, centers, self.radius),
            note=OFFSET_NOTE,
        )

    def _clean_context(
        self,
        path: str,
        outcome: AppliedClean,
        patch_file: PatchFile | None,
        snapshot: PristineSnapshot,
    ) -> FileContext:
        file_lines = snapshot.lines(path)
        centers = [h.old_start - 1 for h in patch_file.hunks] if patch_file else []
        return FileContext(
            path=path,
            outcome=outcome,
            excerpts=self._excerpts(file_lines, centers, self.clean_radius),
            note=CLEAN_NOTE,
        )

    def build(
        self,
        parsed: ParsedPatch,
        apply_result: ApplyResult,
        snapshot: PristineSnapshot,
        attempt: int = 1,
        last_failure_signal: str | None = None,
        applied: ParsedPatch | None = None,
    ) -> PatchContext:
        """
        Build a fresh context for one generator call.

        Args:
            parsed: The original patch; its intent and metadata are what the
                generator must preserve
            apply_result: Outcomes of the most recent apply run
            snapshot: Pristine content of every touched file
            attempt: Attempt number the context is built for
            last_failure_signal: Diagnostic of the immediately preceding attempt
            applied: The patch that produced ``apply_result``, when it differs
                from ``parsed``

        Returns:
            A new PatchContext covering every file of the apply run
        """
        source = applied or parsed
        file_contexts: dict[str, FileContext] = {}
        rejected_hunks: list[RejectedHunk] = []

        for path, outcome in apply_result.outcomes.items():
            patch_file = source.get(path) or parsed.get(path)
            if isinstance(outcome, Rejected):
                context, hunks = self._rejected_context(path, outcome, snapshot)
                rejected_hunks.extend(hunks)
            elif isinstance(outcome, AppliedWithOffset):
                context = self._offset_context(path, outcome, patch_file, snapshot)
            else:
                context = self._clean_context(path, outcome, patch_file, snapshot)
            file_contexts[path] = context

        logger.info(
            "Built context for attempt %d: %d rejected hunks, %d offset files",
            attempt,
            len(rejected_hunks),
            len(apply_result.offset_paths),
        )
        return PatchContext(
            patch=parsed,
            rejected_hunks=tuple(rejected_hunks),
            file_contexts=file_contexts,
            attempt=attempt,
            last_failure_signal=last_failure_signal,
        )

    def with_failure(
        self, context: PatchContext, signal: str | None, attempt: int
    ) -> PatchContext:
        """Return a copy of ``context`` whose failure signal is replaced by ``signal``."""
        return dataclasses.replace(context, last_failure_signal=signal, attempt=attempt)


def _describe_outcome(path: str, outcome: FileOutcome) -> list[str]:
    lines = []
    if not isinstance(outcome, Rejected):
        return lines
    for fragment in outcome.rejected_fragments:
        header = parse_hunk_header(fragment.split("\n", 1)[0])
        where = f"line {header[0]}" if header else "unknown line"
        lines.append(f"{path}: hunk at {where} was rejected")
    for diagnostic in outcome.diagnostics:
        lines.append(f"{path}: {diagnostic}")
    return lines


def describe_failure(apply_result: ApplyResult) -> str:
    """Single failure signal naming file, line and diagnostic for each rejected file."""
    lines = ["Patch did not apply cleanly:"]
    for path, outcome in apply_result.outcomes.items():
        lines.extend(_describe_outcome(path, outcome))
    return "\n".join(lines)

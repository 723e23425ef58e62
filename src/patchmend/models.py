"""
Data models for patchmend.
"""

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class LineRange:
    """Inclusive line bounds of one hunk's target in the new file numbering."""

    start: int
    end: int


@dataclass(frozen=True)
class Hunk:
    """One hunk of a file diff. The text is replayed verbatim, never re-derived."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    text: str

    @property
    def target(self) -> LineRange:
        return LineRange(self.new_start, self.new_start + self.new_count)

    @property
    def header(self) -> str:
        return self.text.split("\n", 1)[0]


@dataclass(frozen=True)
class PatchFile:
    """One file entry inside a patch."""

    path: str
    hunks: tuple[Hunk, ...] = ()
    text: str = ""
    old_path: str | None = None
    is_new: bool = False
    is_deleted: bool = False

    @property
    def ranges(self) -> tuple[LineRange, ...]:
        return tuple(hunk.target for hunk in self.hunks)


@dataclass(frozen=True)
class PatchMetadata:
    """Commit-style metadata found in an mbox patch header."""

    commit: str = ""
    author: str = ""
    date: str = ""
    subject: str = ""
    raw_header: str = ""


@dataclass(frozen=True)
class ParsedPatch:
    """Structural model of a unified diff."""

    text: str
    metadata: PatchMetadata
    preamble: str
    files: tuple[PatchFile, ...]

    @property
    def paths(self) -> list[str]:
        return [patch_file.path for patch_file in self.files]

    def get(self, path: str) -> PatchFile | None:
        for patch_file in self.files:
            if patch_file.path == path:
                return patch_file
        return None


@dataclass(frozen=True)
class AppliedClean:
    """Every hunk applied at the exact expected location."""


@dataclass(frozen=True)
class AppliedWithOffset:
    """Every hunk applied, at least one at a shifted location."""

    offset_lines: int
    applied_at: tuple[int, ...] = ()


@dataclass(frozen=True)
class Rejected:
    """One or more hunks could not be applied."""

    rejected_fragments: tuple[str, ...]
    diagnostics: tuple[str, ...] = ()


FileOutcome = AppliedClean | AppliedWithOffset | Rejected


@dataclass(frozen=True)
class OffsetCondition:
    """Not an error: a file that applied with an offset and still needs surfacing."""

    path: str
    outcome: AppliedWithOffset


@dataclass
class PristineSnapshot:
    """File content captured before any patch-apply call mutated the checkout."""

    files: dict[str, str] = field(default_factory=dict)
    absent: set[str] = field(default_factory=set)

    def __contains__(self, path: object) -> bool:
        return path in self.files or path in self.absent

    @property
    def paths(self) -> list[str]:
        return sorted(set(self.files) | self.absent)

    def content(self, path: str) -> str | None:
        return self.files.get(path)

    def lines(self, path: str) -> list[str]:
        content = self.files.get(path)
        if not content:
            return []
        lines = content.split("\n")
        if content.endswith("\n"):
            lines.pop()
        return lines


class DifferenceKind(str, Enum):
    LINE_COUNT = "line_count"
    BLANK_LINE = "blank_line"
    TRAILING_WHITESPACE = "trailing_whitespace"
    WHITESPACE = "whitespace"
    CONTENT = "content"


@dataclass(frozen=True)
class Difference:
    """One labelled mismatch between what a hunk expected and what is present."""

    kind: DifferenceKind
    message: str
    expected_line: int | None = None
    actual_line: int | None = None

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


@dataclass(frozen=True)
class ExpectedVsActual:
    """Comparison of a rejected hunk's expectations with the pristine file."""

    expected: tuple[str, ...]
    anchors: tuple[str, ...]
    actual: tuple[str, ...]
    expected_start: int
    actual_start: int | None
    differences: tuple[Difference, ...] = ()


@dataclass(frozen=True)
class RejectedHunk:
    """A rejected fragment together with its expected-vs-actual comparison."""

    path: str
    index: int
    fragment: str
    expected_line: int
    comparison: ExpectedVsActual


@dataclass(frozen=True)
class Excerpt:
    """A window of pristine file content; start_line is 1-based."""

    start_line: int
    lines: tuple[str, ...]

    @property
    def end_line(self) -> int:
        return self.start_line + len(self.lines) - 1

    def render(self) -> str:
        width = len(str(max(self.end_line, 1)))
        return "\n".join(
            f"{self.start_line + i:>{width}}: {line}" for i, line in enumerate(self.lines)
        )


@dataclass(frozen=True)
class FileContext:
    """Per-file context handed to the fix generator."""

    path: str
    outcome: FileOutcome
    excerpts: tuple[Excerpt, ...]
    note: str


@dataclass(frozen=True)
class PatchContext:
    """
    Everything the fix generator is given for one attempt.

    Holds at most one failure signal, from the immediately preceding attempt.
    """

    patch: ParsedPatch
    rejected_hunks: tuple[RejectedHunk, ...]
    file_contexts: dict[str, FileContext]
    attempt: int = 1
    last_failure_signal: str | None = None

    @property
    def original_patch(self) -> str:
        return self.patch.text

    @property
    def metadata(self) -> PatchMetadata:
        return self.patch.metadata

    @property
    def rejected_paths(self) -> list[str]:
        return [
            path
            for path, ctx in self.file_contexts.items()
            if isinstance(ctx.outcome, Rejected)
        ]

    @property
    def offset_paths(self) -> list[str]:
        return [
            path
            for path, ctx in self.file_contexts.items()
            if isinstance(ctx.outcome, AppliedWithOffset)
        ]


@dataclass(frozen=True)
class CandidateFix:
    """A candidate patch returned by the fix generator."""

    patch: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ApplyResult:
    """Outcome of one apply run: exactly one FileOutcome per file."""

    outcomes: dict[str, FileOutcome]
    output: str = ""
    return_code: int = 0

    @property
    def rejected_paths(self) -> list[str]:
        return [p for p, o in self.outcomes.items() if isinstance(o, Rejected)]

    @property
    def offset_paths(self) -> list[str]:
        return [p for p, o in self.outcomes.items() if isinstance(o, AppliedWithOffset)]

    @property
    def clean_paths(self) -> list[str]:
        return [p for p, o in self.outcomes.items() if isinstance(o, AppliedClean)]

    @property
    def has_rejections(self) -> bool:
        return bool(self.rejected_paths)

    def offset_conditions(self) -> list[OffsetCondition]:
        return [
            OffsetCondition(path, outcome)
            for path, outcome in self.outcomes.items()
            if isinstance(outcome, AppliedWithOffset)
        ]


@dataclass(frozen=True)
class ValidationOutcome:
    """Result reported by a validator collaborator."""

    passed: bool
    diagnostic: str = ""


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of one retry iteration."""

    attempt: int
    applied: bool
    validated: bool
    failure_signal: str | None = None


class ReconcileStatus(str, Enum):
    APPLIED_CLEAN = "applied_clean"
    APPLIED_WITH_OFFSET = "applied_with_offset"
    FIXED = "fixed"


@dataclass
class ReconcileResult:
    """Final result of reconciling one patch."""

    status: ReconcileStatus
    patch_text: str
    attempts: int
    initial_outcomes: dict[str, FileOutcome]
    last_attempt: AttemptResult | None = None
    cost: float = 0.0


@dataclass
class PatchFailure:
    """Information about a patch that could not be fixed."""

    patch_name: str
    error_output: str

"""
Patch application against a repository checkout.

Captures the pristine content of every touched file, applies a patch with
``git apply --reject`` so that whatever can be applied is applied and the rest
is written aside as ``.rej`` fragments, and classifies each file's outcome by
reading git's progress stream line by line.
"""

import contextlib
import logging
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .constants import DEFAULT_GIT_TIMEOUT, REJECT_SUFFIX
from .diff_parser import parse_patch, split_hunks
from .exceptions import (
    ApplyToolError,
    CheckoutStateError,
    GitOperationError,
    PristineReadError,
)
from .models import (
    AppliedClean,
    AppliedWithOffset,
    ApplyResult,
    FileOutcome,
    ParsedPatch,
    PristineSnapshot,
    Rejected,
)
from .utils import ensure_trailing_newline, run_git_command

logger = logging.getLogger(__name__)

CHECKING_PATTERN = re.compile(r"^Checking patch (.+?)\.\.\.$")
APPLYING_PATTERN = re.compile(r"^Applying patch (.+?) with (\d+) rejects?\.\.\.$")
APPLIED_PATTERN = re.compile(r"^Applied patch (.+?) cleanly\.$")
HUNK_SUCCEEDED_PATTERN = re.compile(
    r"^Hunk #(\d+) succeeded at (\d+)(?: \(offset (-?\d+) lines?\))?\.$"
)
HUNK_CLEAN_PATTERN = re.compile(r"^Hunk #(\d+) applied cleanly\.$")
HUNK_REJECTED_PATTERN = re.compile(r"^Rejected hunk #(\d+)\.$")
PATCH_FAILED_PATTERN = re.compile(r"^error: patch failed: (.+):(\d+)$")
FILE_ERROR_PATTERN = re.compile(r"^error: (.+?): (.+)$")
SEARCHING_LINE = "error: while searching for:"


@dataclass
class ProgressRecord:
    """What git reported about one file."""

    offsets: dict[int, int] = field(default_factory=dict)
    applied_at: dict[int, int] = field(default_factory=dict)
    rejected_hunks: set[int] = field(default_factory=set)
    diagnostics: list[str] = field(default_factory=list)
    failed: bool = False
    applied_cleanly: bool = False


def _announced_name(name: str) -> str:
    # Renames are announced as "old => new"
    if " => " in name:
        return name.split(" => ", 1)[1]
    return name


def parse_apply_output(output: str, paths: list[str]) -> dict[str, ProgressRecord]:
    """
    Parse git apply's line-oriented progress output.

    A file announcement ("Checking patch X...", "Applying patch X with N
    rejects...", "Applied patch X cleanly.") makes X the current file; hunk
    lines that follow are attributed to it, wherever they appear in the stream.
    Error lines naming a file are attributed to that file directly.

    Args:
        output: Combined stdout/stderr of ``git apply --reject``
        paths: Paths of the files in the patch

    Returns:
        Mapping from path to what git reported about it
    """
    known = set(paths)
    records: dict[str, ProgressRecord] = {}
    current: str | None = None
    searched: list[str] | None = None

    def record_for(path: str) -> ProgressRecord:
        if path not in records:
            records[path] = ProgressRecord()
        return records[path]

    for line in output.splitlines():
        if searched is not None:
            if line.startswith(("error: ", "Checking patch ", "Applying patch ")):
                pass
            else:
                searched.append(line)
                continue

        if line == SEARCHING_LINE:
            searched = []
            continue

        match = PATCH_FAILED_PATTERN.match(line)
        if match:
            path, line_number = match.group(1), match.group(2)
            record = record_for(path)
            record.failed = True
            diagnostic = f"patch failed at line {line_number}"
            if searched:
                diagnostic += ", while searching for:\n" + "\n".join(searched)
            record.diagnostics.append(diagnostic)
            searched = None
            continue
        searched = None

        match = CHECKING_PATTERN.match(line) or APPLYING_PATTERN.match(line)
        if match:
            current = _announced_name(match.group(1))
            record_for(current)
            continue

        match = APPLIED_PATTERN.match(line)
        if match:
            current = _announced_name(match.group(1))
            record_for(current).applied_cleanly = True
            continue

        match = HUNK_SUCCEEDED_PATTERN.match(line)
        if match and current is not None:
            hunk = int(match.group(1))
            record = record_for(current)
            record.applied_at[hunk] = int(match.group(2))
            record.offsets[hunk] = int(match.group(3) or 0)
            continue

        match = HUNK_REJECTED_PATTERN.match(line)
        if match and current is not None:
            record_for(current).rejected_hunks.add(int(match.group(1)))
            continue

        if HUNK_CLEAN_PATTERN.match(line):
            continue

        match = FILE_ERROR_PATTERN.match(line)
        if match and match.group(1) in known:
            record = record_for(match.group(1))
            record.failed = True
            record.diagnostics.append(match.group(2))

    return records


def parse_reject_file(content: str) -> list[str]:
    """Split the content of a .rej file into its raw hunk fragments."""
    hunks = split_hunks(content.split("\n"))
    if hunks:
        return [hunk.text for hunk in hunks]
    stripped = content.strip("\n")
    return [stripped] if stripped else []


def _encode(content: str) -> bytes:
    return content.encode("utf-8", "surrogateescape")


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


class ApplicationEngine:
    """Applies patches to a checkout and reports per-file outcomes."""

    def __init__(self, timeout: float = DEFAULT_GIT_TIMEOUT):
        self.timeout = timeout

    def capture_snapshot(
        self,
        parsed: ParsedPatch,
        repo_dir: Path,
        snapshot: PristineSnapshot | None = None,
    ) -> PristineSnapshot:
        """
        Read the current content of every file the patch touches.

        Must run before git apply mutates the tree. Paths already present in
        ``snapshot`` are never re-read; new paths are added to it.

        Args:
            parsed: Parsed patch
            repo_dir: Path to the repository checkout
            snapshot: Existing snapshot to extend, if any

        Returns:
            The snapshot, covering every path in the patch

        Raises:
            PristineReadError: If any existing file could not be read. Every
                other file is still captured before the error is raised.
        """
        if snapshot is None:
            snapshot = PristineSnapshot()

        paths = []
        for patch_file in parsed.files:
            paths.append(patch_file.path)
            if patch_file.old_path:
                paths.append(patch_file.old_path)

        unreadable = []
        for path in paths:
            if path in snapshot:
                continue
            target = repo_dir / path
            if not target.exists():
                snapshot.absent.add(path)
                continue
            try:
                snapshot.files[path] = _decode(target.read_bytes())
            except OSError as e:
                logger.warning("Could not read pristine file %s: %s", path, e)
                unreadable.append(path)
                continue
            logger.debug("Captured pristine content of %s", path)

        if unreadable:
            raise PristineReadError(
                f"Could not read files before applying patch: {', '.join(unreadable)}",
                unreadable,
                snapshot,
            )
        return snapshot

    def _remove_rejects(self, repo_dir: Path, paths: list[str]) -> None:
        for path in paths:
            with contextlib.suppress(FileNotFoundError):
                (repo_dir / (path + REJECT_SUFFIX)).unlink()

    def _read_rejects(self, repo_dir: Path, path: str) -> list[str]:
        reject_path = repo_dir / (path + REJECT_SUFFIX)
        if not reject_path.is_file():
            return []
        return parse_reject_file(_decode(reject_path.read_bytes()))

    def classify(
        self,
        parsed: ParsedPatch,
        records: dict[str, ProgressRecord],
        repo_dir: Path,
    ) -> dict[str, FileOutcome]:
        """
        Decide exactly one outcome for each file of the patch.

        A file is rejected if git wrote a .rej for it, rejected a hunk of it
        or reported an error for it; otherwise it applied with an offset if
        any hunk landed away from its expected line; otherwise it is clean.
        """
        outcomes: dict[str, FileOutcome] = {}
        for patch_file in parsed.files:
            path = patch_file.path
            record = records.get(path, ProgressRecord())
            fragments = self._read_rejects(repo_dir, path)

            if fragments or record.rejected_hunks or record.failed:
                if not fragments:
                    wanted = record.rejected_hunks or set(
                        range(1, len(patch_file.hunks) + 1)
                    )
                    fragments = [
                        hunk.text
                        for index, hunk in enumerate(patch_file.hunks, start=1)
                        if index in wanted
                    ] or [hunk.text for hunk in patch_file.hunks]
                outcomes[path] = Rejected(
                    rejected_fragments=tuple(fragments),
                    diagnostics=tuple(record.diagnostics),
                )
                continue

            shifted = [
                (hunk, offset) for hunk, offset in sorted(record.offsets.items()) if offset
            ]
            if shifted:
                outcomes[path] = AppliedWithOffset(
                    offset_lines=shifted[0][1],
                    applied_at=tuple(record.applied_at[hunk] for hunk, _ in shifted),
                )
            else:
                outcomes[path] = AppliedClean()
        return outcomes

    def apply(
        self,
        patch_text: str,
        repo_dir: Path,
        snapshot: PristineSnapshot | None = None,
    ) -> tuple[ApplyResult, PristineSnapshot]:
        """
        Apply a patch in reject-tolerant mode.

        Leaves the working tree mutated with whatever applied; callers that
        need a clean tree again must call revert().

        Args:
            patch_text: Patch to apply
            repo_dir: Path to the repository checkout
            snapshot: Snapshot to extend rather than capture from scratch

        Returns:
            The per-file outcomes and the pristine snapshot

        Raises:
            MalformedPatchError: If the patch has no file boundaries
            PristineReadError: If a touched file could not be read
            ApplyToolError: If git failed without attributing it to a file
        """
        parsed = parse_patch(patch_text)
        snapshot = self.capture_snapshot(parsed, repo_dir, snapshot)
        self._remove_rejects(repo_dir, parsed.paths)

        with tempfile.NamedTemporaryFile(
            mode="w", suffix=".patch", delete=False, encoding="utf-8", errors="surrogateescape"
        ) as tmp_file:
            # A patch without a final newline is reported as corrupt
            tmp_file.write(ensure_trailing_newline(patch_text))
            tmp_patch_path = tmp_file.name

        try:
            logger.info("Applying patch with git apply --reject in %s", repo_dir)
            result = run_git_command(
                ["git", "apply", "--reject", "--whitespace=fix", tmp_patch_path],
                cwd=repo_dir,
                timeout=self.timeout,
                check=False,
            )
        except GitOperationError as e:
            raise ApplyToolError(str(e)) from e
        finally:
            with contextlib.suppress(OSError):
                Path(tmp_patch_path).unlink()

        output = result.stdout or ""
        records = parse_apply_output(output, parsed.paths)
        outcomes = self.classify(parsed, records, repo_dir)
        apply_result = ApplyResult(
            outcomes=outcomes, output=output, return_code=result.returncode
        )

        if result.returncode != 0 and not apply_result.has_rejections:
            raise ApplyToolError(
                f"git apply failed: {output.strip() or 'no output'}", output
            )

        for path, outcome in outcomes.items():
            logger.info("Outcome for %s: %s", path, type(outcome).__name__)
        return apply_result, snapshot

    def verify_pristine(self, repo_dir: Path, snapshot: PristineSnapshot) -> list[str]:
        """Return the paths whose on-disk state differs from the snapshot."""
        differing = []
        for path, content in snapshot.files.items():
            target = repo_dir / path
            try:
                if target.read_bytes() != _encode(content):
                    differing.append(path)
            except OSError:
                differing.append(path)
        for path in snapshot.absent:
            if (repo_dir / path).exists():
                differing.append(path)
        return sorted(differing)

    def revert(self, repo_dir: Path, snapshot: PristineSnapshot) -> None:
        """
        Return the checkout to its pristine state.

        Resets tracked files and removes untracked ones with git, then restores
        any snapshot file git could not bring back and verifies the result.

        Raises:
            CheckoutStateError: If the tree still differs from the snapshot
        """
        logger.info("Reverting checkout %s to pristine state", repo_dir)
        for command in (["git", "reset", "--hard", "HEAD"], ["git", "clean", "-fd"]):
            try:
                run_git_command(command, cwd=repo_dir, timeout=self.timeout)
            except GitOperationError as e:
                logger.warning("%s", e)

        self._remove_rejects(repo_dir, snapshot.paths)

        for path in self.verify_pristine(repo_dir, snapshot):
            target = repo_dir / path
            try:
                if path in snapshot.absent:
                    target.unlink()
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(_encode(snapshot.files[path]))
            except OSError as e:
                logger.warning("Could not restore %s: %s", path, e)
            else:
                logger.info("Restored %s from pristine snapshot", path)

        differing = self.verify_pristine(repo_dir, snapshot)
        if differing:
            raise CheckoutStateError(
                f"Checkout differs from pristine snapshot: {', '.join(differing)}",
                differing,
            )


def calculate_complexity(apply_result: ApplyResult) -> int:
    """Complexity of a failed application: rejected hunks plus rejected files."""
    hunks = 0
    files = 0
    for outcome in apply_result.outcomes.values():
        if isinstance(outcome, Rejected):
            files += 1
            hunks += max(len(outcome.rejected_fragments), 1)
    return hunks + files

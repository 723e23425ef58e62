"""
Unified diff parsing.

Turns patch text into a ParsedPatch: the files it touches, the target line
ranges of their hunks, and the mbox metadata block that has to survive any
regeneration byte-for-byte. Hunk bodies are kept as opaque text.
"""

import logging
import re

from .exceptions import MalformedPatchError
from .models import Hunk, ParsedPatch, PatchFile, PatchMetadata

logger = logging.getLogger(__name__)

HUNK_HEADER_PATTERN = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
DIFF_GIT_PATTERN = re.compile(r"^diff --git \"?a/(.+?)\"? \"?b/(.+?)\"?$")
METADATA_KEY_PATTERN = re.compile(r"^([A-Za-z][A-Za-z0-9-]*):[ \t]?(.*)$")
MBOX_FROM_PATTERN = re.compile(r"^From ([0-9a-fA-F]{7,64})\b")

METADATA_KEYS = {"From": "author", "Date": "date", "Subject": "subject"}
DEV_NULL = "/dev/null"


def parse_hunk_header(line: str) -> tuple[int, int, int, int] | None:
    """
    Parse a ``@@ -oldStart,oldCount +newStart,newCount @@`` header.

    Omitted counts default to 1, as in the unified diff format.
    """
    match = HUNK_HEADER_PATTERN.match(line)
    if not match:
        return None
    old_start, old_count, new_start, new_count = match.groups()
    return (
        int(old_start),
        int(old_count) if old_count is not None else 1,
        int(new_start),
        int(new_count) if new_count is not None else 1,
    )


def _line_offsets(lines: list[str]) -> list[int]:
    offsets = []
    position = 0
    for line in lines:
        offsets.append(position)
        position += len(line) + 1
    return offsets


def _boundary_indexes(lines: list[str]) -> list[int]:
    """Indexes of the lines that start a file diff."""
    indexes = [i for i, line in enumerate(lines) if line.startswith("diff --git ")]
    if indexes:
        return indexes
    # Plain unified diff: a "--- " line immediately followed by "+++ "
    return [
        i
        for i in range(len(lines) - 1)
        if lines[i].startswith("--- ") and lines[i + 1].startswith("+++ ")
    ]


def _strip_path(raw: str, prefix: str) -> str:
    path = raw.split("\t", 1)[0].strip()
    if path.startswith('"') and path.endswith('"'):
        path = path[1:-1]
    if path == DEV_NULL:
        return path
    if path.startswith(prefix):
        path = path[len(prefix) :]
    return path


def split_hunks(lines: list[str]) -> list[Hunk]:
    """
    Collect the hunks found in ``lines``.

    A hunk extends for as many body lines as its header counts announce, so
    trailers such as the mbox signature are never swallowed into the last hunk.
    """
    hunks: list[Hunk] = []
    i = 0
    while i < len(lines):
        header = parse_hunk_header(lines[i])
        if header is None:
            i += 1
            continue

        old_start, old_count, new_start, new_count = header
        old_left, new_left = old_count, new_count
        j = i + 1
        while j < len(lines) and (old_left > 0 or new_left > 0):
            line = lines[j]
            if line.startswith("@@") or line.startswith("diff "):
                break
            if line.startswith("+"):
                new_left -= 1
            elif line.startswith("-"):
                old_left -= 1
            elif line.startswith("\\"):
                pass
            else:
                # Context line; a bare empty line is a context line whose
                # leading space was stripped by an editor
                old_left -= 1
                new_left -= 1
            j += 1
        # "\ No newline at end of file" belongs to the hunk
        while j < len(lines) and lines[j].startswith("\\"):
            j += 1

        hunks.append(
            Hunk(
                old_start=old_start,
                old_count=old_count,
                new_start=new_start,
                new_count=new_count,
                text="\n".join(lines[i:j]),
            )
        )
        i = j
    return hunks


def _parse_file(segment: list[str], text: str) -> PatchFile:
    git_path_a = git_path_b = None
    match = DIFF_GIT_PATTERN.match(segment[0])
    if match:
        git_path_a, git_path_b = match.group(1), match.group(2)

    minus_path = plus_path = None
    is_new = is_deleted = False
    for line in segment:
        if line.startswith("@@"):
            break
        if line.startswith("--- "):
            minus_path = _strip_path(line[4:], "a/")
        elif line.startswith("+++ "):
            plus_path = _strip_path(line[4:], "b/")
        elif line.startswith("new file mode"):
            is_new = True
        elif line.startswith("deleted file mode"):
            is_deleted = True

    if minus_path == DEV_NULL:
        is_new = True
        minus_path = None
    if plus_path == DEV_NULL:
        is_deleted = True
        plus_path = None

    path = plus_path or git_path_b or minus_path or git_path_a
    if not path:
        raise MalformedPatchError(f"Cannot determine file path from: {segment[0]}")

    old_path = minus_path or git_path_a
    return PatchFile(
        path=path,
        hunks=tuple(split_hunks(segment)),
        text=text,
        old_path=old_path if old_path != path else None,
        is_new=is_new,
        is_deleted=is_deleted,
    )


def parse_metadata(preamble: str) -> PatchMetadata:
    """
    Extract author, date and subject from an mbox-style header block.

    Header values continue on following lines that start with whitespace;
    continuation lines are accumulated until a blank line or the next key.
    """
    lines = preamble.split("\n")
    commit = ""
    start = 0
    if lines and lines[0].startswith("From "):
        match = MBOX_FROM_PATTERN.match(lines[0])
        if match:
            commit = match.group(1)
        start = 1

    values: dict[str, list[str]] = {}
    current: str | None = None
    end = start
    for end in range(start, len(lines)):
        line = lines[end]
        if line.strip() == "":
            break
        if line[0] in " \t":
            if current is not None:
                values[current].append(line)
            continue
        match = METADATA_KEY_PATTERN.match(line)
        if not match:
            # Not a header block after all
            if end == start:
                return PatchMetadata(commit=commit)
            break
        key = match.group(1)
        current = key if key in METADATA_KEYS and key not in values else None
        if current is not None:
            values[current] = [match.group(2)]
    else:
        end = len(lines)

    if not values and not commit:
        return PatchMetadata()

    fields = {
        METADATA_KEYS[key]: "\n".join(parts) for key, parts in values.items()
    }
    raw_header = "\n".join(lines[:end])
    return PatchMetadata(commit=commit, raw_header=raw_header, **fields)


def parse_patch(text: str) -> ParsedPatch:
    """
    Parse unified diff text.

    Args:
        text: Patch content, optionally preceded by an mbox metadata block

    Returns:
        The parsed patch with one PatchFile per file boundary, in order

    Raises:
        MalformedPatchError: If the text contains no file boundary at all
    """
    lines = text.split("\n")
    boundaries = _boundary_indexes(lines)
    if not boundaries:
        raise MalformedPatchError("Patch contains no file boundary ('diff --git' header)")

    offsets = _line_offsets(lines)
    files = []
    for position, start in enumerate(boundaries):
        end = boundaries[position + 1] if position + 1 < len(boundaries) else len(lines)
        text_end = offsets[end] if end < len(lines) else len(text)
        files.append(_parse_file(lines[start:end], text[offsets[start] : text_end]))

    preamble = text[: offsets[boundaries[0]]]
    parsed = ParsedPatch(
        text=text,
        metadata=parse_metadata(preamble),
        preamble=preamble,
        files=tuple(files),
    )
    logger.debug(
        "Parsed patch: %d files, %d hunks",
        len(parsed.files),
        sum(len(f.hunks) for f in parsed.files),
    )
    return parsed


def reattach_preamble(candidate: str, original: ParsedPatch) -> str:
    """
    Replace a regenerated patch's preamble with the original one.

    The metadata block (From, Date, multi-line Subject) and commit message are
    restored byte-for-byte; everything from the first file boundary on is
    taken from the candidate. A candidate without any file boundary is
    returned unchanged.
    """
    lines = candidate.split("\n")
    boundaries = _boundary_indexes(lines)
    if not boundaries:
        return candidate
    offset = _line_offsets(lines)[boundaries[0]]
    return original.preamble + candidate[offset:]


def missing_paths(original: ParsedPatch, candidate: ParsedPatch) -> list[str]:
    """Paths of the original patch that the candidate does not touch, in patch order."""
    present = set(candidate.paths)
    return [path for path in original.paths if path not in present]


def extract_file_diffs(patch: ParsedPatch, paths: list[str]) -> str:
    """Return the diff text of only the given files, in patch order."""
    wanted = set(paths)
    return "".join(
        patch_file.text for patch_file in patch.files if patch_file.path in wanted
    )


def count_changed_lines(text: str) -> int:
    """Count added and removed lines inside hunks."""
    count = 0
    for hunk in split_hunks(text.split("\n")):
        for line in hunk.text.split("\n")[1:]:
            if line.startswith(("+", "-")):
                count += 1
    return count

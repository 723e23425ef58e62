"""Tests for patch application and outcome classification."""

import subprocess
import tempfile
from pathlib import Path

import pytest

from patchmend.applier import (
    ApplicationEngine,
    ProgressRecord,
    calculate_complexity,
    parse_apply_output,
    parse_reject_file,
)
from patchmend.diff_parser import parse_patch
from patchmend.exceptions import ApplyToolError, MalformedPatchError, PristineReadError
from patchmend.models import AppliedClean, AppliedWithOffset, ApplyResult, Rejected

CONFIG = "alpha\nbeta\ngamma\ndelta\nepsilon\n"
NOTES = "one\ntwo\nthree\nfour\nfive\nsix\n"

CONFIG_PATCH = """diff --git a/config.txt b/config.txt
--- a/config.txt
+++ b/config.txt
@@ -2,3 +2,4 @@
 beta
 gamma
+inserted
 delta
"""

NOTES_PATCH = """diff --git a/notes.txt b/notes.txt
--- a/notes.txt
+++ b/notes.txt
@@ -3,3 +3,4 @@
 three
 four
+four-and-a-half
 five
"""


def init_repo(repo_dir: Path, files: dict[str, str]) -> None:
    """Create a git repository with one commit containing ``files``."""
    repo_dir.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "init", "-q"], cwd=repo_dir, check=True)
    subprocess.run(["git", "config", "user.email", "test@example.com"], cwd=repo_dir, check=True)
    subprocess.run(["git", "config", "user.name", "Test"], cwd=repo_dir, check=True)
    for name, content in files.items():
        path = repo_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    subprocess.run(["git", "add", "-A"], cwd=repo_dir, check=True)
    subprocess.run(["git", "commit", "-q", "-m", "initial"], cwd=repo_dir, check=True)


class TestParseApplyOutput:
    """Test parsing of git apply's progress stream."""

    def test_offset_hunk(self):
        """A hunk applied away from its expected line records the signed offset."""
        output = (
            "Checking patch main.go...\n"
            "Hunk #1 succeeded at 935 (offset 2 lines).\n"
            "Applied patch main.go cleanly.\n"
        )
        records = parse_apply_output(output, ["main.go"])

        assert records["main.go"].offsets == {1: 2}
        assert records["main.go"].applied_at == {1: 935}
        assert records["main.go"].applied_cleanly
        assert not records["main.go"].failed

    def test_negative_and_singular_offsets(self):
        """Offsets may be negative and the unit singular."""
        output = (
            "Checking patch a.c...\n"
            "Hunk #1 succeeded at 10 (offset -3 lines).\n"
            "Hunk #2 succeeded at 40 (offset 1 line).\n"
        )
        records = parse_apply_output(output, ["a.c"])
        assert records["a.c"].offsets == {1: -3, 2: 1}

    def test_rejected_hunk_with_search_context(self):
        """Rejected hunks are attributed to the announced file with git's diagnostic."""
        output = (
            "Checking patch config.txt...\n"
            "error: while searching for:\n"
            "beta\n"
            "gamma\n"
            "delta\n"
            "\n"
            "error: patch failed: config.txt:2\n"
            "Checking patch notes.txt...\n"
            "Hunk #1 succeeded at 5 (offset 2 lines).\n"
            "Applying patch config.txt with 1 reject...\n"
            "Rejected hunk #1.\n"
            "Applied patch notes.txt cleanly.\n"
        )
        records = parse_apply_output(output, ["config.txt", "notes.txt"])

        config = records["config.txt"]
        assert config.failed
        assert config.rejected_hunks == {1}
        assert config.diagnostics[0].startswith("patch failed at line 2")
        assert "gamma" in config.diagnostics[0]
        assert records["notes.txt"].offsets == {1: 2}
        assert not records["notes.txt"].rejected_hunks

    def test_file_level_error(self):
        """An error naming a file of the patch marks that file failed."""
        output = "error: missing.txt: No such file or directory\n"
        records = parse_apply_output(output, ["missing.txt"])

        assert records["missing.txt"].failed
        assert records["missing.txt"].diagnostics == ["No such file or directory"]

    def test_unattributed_error_is_ignored(self):
        """Errors that name no file of the patch are not attributed."""
        records = parse_apply_output("error: corrupt patch at line 7\n", ["a.txt"])
        assert records == {}

    def test_parse_reject_file(self):
        """A .rej file splits into its hunks."""
        content = (
            "diff a/config.txt b/config.txt\t(rejected hunks)\n"
            "@@ -2,3 +2,4 @@\n"
            " beta\n"
            " gamma\n"
            "+inserted\n"
            " delta\n"
        )
        assert parse_reject_file(content) == [
            "@@ -2,3 +2,4 @@\n beta\n gamma\n+inserted\n delta"
        ]


class TestClassify:
    """Test per-file outcome classification."""

    def test_tri_state(self):
        """Each file gets exactly one of clean, offset or rejected."""
        parsed = parse_patch(CONFIG_PATCH + NOTES_PATCH)
        records = {
            "config.txt": ProgressRecord(rejected_hunks={1}, failed=True),
            "notes.txt": ProgressRecord(offsets={1: 2}, applied_at={1: 5}),
        }
        with tempfile.TemporaryDirectory() as temp_dir:
            outcomes = ApplicationEngine().classify(parsed, records, Path(temp_dir))

        assert isinstance(outcomes["config.txt"], Rejected)
        assert outcomes["config.txt"].rejected_fragments == (parsed.files[0].hunks[0].text,)
        assert outcomes["notes.txt"] == AppliedWithOffset(offset_lines=2, applied_at=(5,))

    def test_zero_offset_is_clean(self):
        """A hunk reported at its expected line is clean."""
        parsed = parse_patch(NOTES_PATCH)
        records = {"notes.txt": ProgressRecord(offsets={1: 0}, applied_at={1: 3})}
        with tempfile.TemporaryDirectory() as temp_dir:
            outcomes = ApplicationEngine().classify(parsed, records, Path(temp_dir))
        assert outcomes["notes.txt"] == AppliedClean()

    def test_rejection_dominates_offset(self):
        """A file with one shifted hunk and one rejected hunk is rejected."""
        parsed = parse_patch(NOTES_PATCH)
        records = {
            "notes.txt": ProgressRecord(offsets={1: 4}, applied_at={1: 7}, rejected_hunks={2})
        }
        with tempfile.TemporaryDirectory() as temp_dir:
            outcomes = ApplicationEngine().classify(parsed, records, Path(temp_dir))
        assert isinstance(outcomes["notes.txt"], Rejected)


class TestApplicationEngine:
    """Test applying patches to real git checkouts."""

    def test_clean_apply(self):
        """A patch matching the tree applies cleanly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo_dir = Path(temp_dir) / "repo"
            init_repo(repo_dir, {"config.txt": CONFIG})

            result, snapshot = ApplicationEngine().apply(CONFIG_PATCH, repo_dir)

            assert result.outcomes == {"config.txt": AppliedClean()}
            assert snapshot.files["config.txt"] == CONFIG
            assert "inserted" in (repo_dir / "config.txt").read_text()

    def test_offset_apply(self):
        """Lines inserted upstream shift the hunk without rejecting it."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo_dir = Path(temp_dir) / "repo"
            init_repo(repo_dir, {"notes.txt": "zero-a\nzero-b\n" + NOTES})

            result, _ = ApplicationEngine().apply(NOTES_PATCH, repo_dir)

            assert result.outcomes["notes.txt"] == AppliedWithOffset(
                offset_lines=2, applied_at=(5,)
            )
            assert not result.has_rejections

    def test_rejected_and_offset_mix(self):
        """A rejected file does not hide another file's offset."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo_dir = Path(temp_dir) / "repo"
            init_repo(
                repo_dir,
                {
                    "config.txt": CONFIG.replace("gamma", "GAMMA"),
                    "notes.txt": "zero-a\nzero-b\n" + NOTES,
                },
            )

            result, _ = ApplicationEngine().apply(CONFIG_PATCH + NOTES_PATCH, repo_dir)

            rejected = result.outcomes["config.txt"]
            assert isinstance(rejected, Rejected)
            assert len(rejected.rejected_fragments) == 1
            assert " gamma" in rejected.rejected_fragments[0]
            assert isinstance(result.outcomes["notes.txt"], AppliedWithOffset)
            assert result.rejected_paths == ["config.txt"]
            assert result.offset_paths == ["notes.txt"]
            assert calculate_complexity(result) == 2

    def test_missing_file_is_rejected(self):
        """A file the patch modifies but the tree lacks is rejected, not an error."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo_dir = Path(temp_dir) / "repo"
            init_repo(repo_dir, {"other.txt": "x\n"})

            result, snapshot = ApplicationEngine().apply(CONFIG_PATCH, repo_dir)

            assert isinstance(result.outcomes["config.txt"], Rejected)
            assert "config.txt" in snapshot.absent

    def test_revert_restores_pristine_tree(self):
        """Reverting removes applied changes and .rej files."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo_dir = Path(temp_dir) / "repo"
            init_repo(
                repo_dir,
                {
                    "config.txt": CONFIG.replace("gamma", "GAMMA"),
                    "notes.txt": "zero-a\nzero-b\n" + NOTES,
                },
            )
            engine = ApplicationEngine()
            _, snapshot = engine.apply(CONFIG_PATCH + NOTES_PATCH, repo_dir)
            assert (repo_dir / "config.txt.rej").exists()
            assert engine.verify_pristine(repo_dir, snapshot) == ["notes.txt"]

            engine.revert(repo_dir, snapshot)

            assert not (repo_dir / "config.txt.rej").exists()
            assert engine.verify_pristine(repo_dir, snapshot) == []
            assert (repo_dir / "notes.txt").read_text() == "zero-a\nzero-b\n" + NOTES

    def test_revert_restores_uncommitted_content(self):
        """Content that only exists in the snapshot is written back."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo_dir = Path(temp_dir) / "repo"
            init_repo(repo_dir, {"config.txt": CONFIG})
            (repo_dir / "config.txt").write_text(CONFIG + "local edit\n")
            engine = ApplicationEngine()

            _, snapshot = engine.apply(CONFIG_PATCH, repo_dir)
            engine.revert(repo_dir, snapshot)

            assert (repo_dir / "config.txt").read_text() == CONFIG + "local edit\n"

    def test_snapshot_is_extended_not_recaptured(self):
        """Paths already in a snapshot keep their captured content."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo_dir = Path(temp_dir) / "repo"
            init_repo(repo_dir, {"config.txt": CONFIG, "notes.txt": NOTES})
            engine = ApplicationEngine()

            snapshot = engine.capture_snapshot(parse_patch(CONFIG_PATCH), repo_dir)
            (repo_dir / "config.txt").write_text("changed\n")
            engine.capture_snapshot(parse_patch(CONFIG_PATCH + NOTES_PATCH), repo_dir, snapshot)

            assert snapshot.files["config.txt"] == CONFIG
            assert snapshot.files["notes.txt"] == NOTES

    def test_unreadable_file_raises_after_reading_others(self):
        """An unreadable path is reported together with the partial snapshot."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo_dir = Path(temp_dir) / "repo"
            init_repo(repo_dir, {"notes.txt": NOTES})
            (repo_dir / "config.txt").mkdir()

            with pytest.raises(PristineReadError) as exc_info:
                ApplicationEngine().capture_snapshot(
                    parse_patch(CONFIG_PATCH + NOTES_PATCH), repo_dir
                )

            assert exc_info.value.paths == ["config.txt"]
            assert exc_info.value.snapshot.files["notes.txt"] == NOTES

    def test_corrupt_patch_raises_tool_error(self):
        """A patch git cannot parse is a tool-level failure."""
        corrupt = """diff --git a/config.txt b/config.txt
--- a/config.txt
+++ b/config.txt
@@ -2,3 +2,4 @@
 beta
"""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo_dir = Path(temp_dir) / "repo"
            init_repo(repo_dir, {"config.txt": CONFIG})

            with pytest.raises(ApplyToolError):
                ApplicationEngine().apply(corrupt, repo_dir)

    def test_malformed_patch_raises_before_apply(self):
        """Text without file boundaries never reaches git."""
        with tempfile.TemporaryDirectory() as temp_dir:
            with pytest.raises(MalformedPatchError):
                ApplicationEngine().apply("not a patch\n", Path(temp_dir))


def test_calculate_complexity():
    """Complexity counts rejected hunks plus rejected files."""
    result = ApplyResult(
        outcomes={
            "a": Rejected(rejected_fragments=("@@ -1 +1 @@", "@@ -9 +9 @@")),
            "b": Rejected(rejected_fragments=("@@ -1 +1 @@",)),
            "c": AppliedClean(),
        }
    )
    assert calculate_complexity(result) == 5

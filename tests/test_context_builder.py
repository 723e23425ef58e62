"""Tests for expected-vs-actual context construction."""

from patchmend.constants import CLEAN_NOTE, OFFSET_NOTE
from patchmend.context_builder import (
    ContextBuilder,
    compare_lines,
    describe_failure,
    find_best_match,
    fragment_sides,
    merge_windows,
    window_bounds,
)
from patchmend.diff_parser import parse_patch
from patchmend.models import (
    AppliedClean,
    AppliedWithOffset,
    ApplyResult,
    DifferenceKind,
    PristineSnapshot,
    Rejected,
)

PATCH = """diff --git a/config.txt b/config.txt
--- a/config.txt
+++ b/config.txt
@@ -2,3 +2,4 @@
 beta
 gamma
+inserted
 delta
diff --git a/notes.txt b/notes.txt
--- a/notes.txt
+++ b/notes.txt
@@ -3,3 +3,4 @@
 three
 four
+four-and-a-half
 five
diff --git a/readme.txt b/readme.txt
--- a/readme.txt
+++ b/readme.txt
@@ -1,2 +1,2 @@
-hello
+Hello
 world
"""


def numbered_lines(count: int) -> str:
    return "".join(f"line {i}\n" for i in range(1, count + 1))


def make_snapshot() -> PristineSnapshot:
    return PristineSnapshot(
        files={
            "config.txt": "alpha\nbeta\nGAMMA\ndelta\nepsilon\n",
            "notes.txt": "zero-a\nzero-b\none\ntwo\nthree\nfour\nfive\nsix\n",
            "readme.txt": "hello\nworld\n",
        }
    )


def make_apply_result(parsed) -> ApplyResult:
    return ApplyResult(
        outcomes={
            "config.txt": Rejected(rejected_fragments=(parsed.files[0].hunks[0].text,)),
            "notes.txt": AppliedWithOffset(offset_lines=2, applied_at=(5,)),
            "readme.txt": AppliedClean(),
        }
    )


class TestWindowing:
    """Test excerpt window bounds."""

    def test_window_bounds(self):
        """Windows are clamped to the file."""
        assert window_bounds(50, 10, 100) == (40, 60)
        assert window_bounds(3, 10, 100) == (0, 13)
        assert window_bounds(95, 10, 100) == (85, 100)

    def test_merge_windows(self):
        """Overlapping windows merge; disjoint ones stay apart."""
        assert merge_windows([(30, 50), (0, 10), (5, 20)]) == [(0, 20), (30, 50)]
        assert merge_windows([(0, 10), (10, 15)]) == [(0, 15)]

    def test_excerpt_never_covers_whole_large_file(self):
        """An offset file of thousands of lines is excerpted around the applied line."""
        parsed = parse_patch(PATCH)
        snapshot = PristineSnapshot(files={"notes.txt": numbered_lines(5000)})
        result = ApplyResult(
            outcomes={"notes.txt": AppliedWithOffset(offset_lines=2, applied_at=(935,))}
        )

        context = ContextBuilder(radius=10).build(parsed, result, snapshot)

        (excerpt,) = context.file_contexts["notes.txt"].excerpts
        assert excerpt.start_line == 925
        assert len(excerpt.lines) == 20
        assert excerpt.lines[9] == "line 934"


class TestComparison:
    """Test labelled differences between expected and actual lines."""

    def test_fragment_sides(self):
        """Expected holds context and removals; anchors only context."""
        expected, anchors = fragment_sides("@@ -1,3 +1,3 @@\n a\n-b\n+B\n c")
        assert expected == ["a", "b", "c"]
        assert anchors == ["a", "c"]

    def test_best_match_prefers_nearest_tie(self):
        """Equal scores are broken by distance to the expected line."""
        file_lines = ["x", "a", "b", "x", "x", "a", "b"]
        assert find_best_match(file_lines, ["a", "b"], 4) == (5, 2)
        assert find_best_match(file_lines, ["a", "b"], 0) == (1, 2)

    def test_best_match_none(self):
        """Nothing in common means no match."""
        assert find_best_match(["x", "y"], ["a", "b"], 0) == (None, 0)

    def test_trailing_whitespace_difference(self):
        """Lines equal up to trailing whitespace are labelled as such."""
        differences = compare_lines(["a", "foo  ", "b"], ["a", "foo", "b"], 1, 1)
        assert [d.kind for d in differences] == [DifferenceKind.TRAILING_WHITESPACE]
        assert differences[0].actual_line == 2

    def test_whitespace_difference(self):
        """Lines equal up to inner whitespace are labelled as whitespace-only."""
        differences = compare_lines(["x = 1"], ["x=1"], 1, 1)
        assert [d.kind for d in differences] == [DifferenceKind.WHITESPACE]

    def test_blank_line_and_line_count(self):
        """A missing blank line is reported along with the line count mismatch."""
        differences = compare_lines(["x", "", "y"], ["x", "y"], 10, 20)
        kinds = [d.kind for d in differences]

        assert kinds == [DifferenceKind.LINE_COUNT, DifferenceKind.BLANK_LINE]
        assert differences[1].expected_line == 11

    def test_content_difference(self):
        """A changed line is a content difference."""
        differences = compare_lines(["beta", "gamma"], ["beta", "GAMMA"], 2, 2)
        assert [d.kind for d in differences] == [DifferenceKind.CONTENT]
        assert "'gamma'" in differences[0].message
        assert "'GAMMA'" in differences[0].message

    def test_compare_fragment_trims_slack(self):
        """Slack lines after the match are not reported as extra lines."""
        builder = ContextBuilder()
        file_lines = ["alpha", "beta", "GAMMA", "delta", "epsilon"]

        expected_line, comparison = builder.compare_fragment(
            "@@ -2,3 +2,4 @@\n beta\n gamma\n+inserted\n delta", file_lines
        )

        assert expected_line == 2
        assert comparison.expected == ("beta", "gamma", "delta")
        assert comparison.anchors == ("beta", "gamma", "delta")
        assert comparison.actual == ("beta", "GAMMA", "delta")
        assert comparison.actual_start == 2
        assert [d.kind for d in comparison.differences] == [DifferenceKind.CONTENT]

    def test_compare_fragment_missing_file(self):
        """A fragment for an absent file says so."""
        _, comparison = ContextBuilder().compare_fragment(
            "@@ -1 +1 @@\n-a\n+b", [], exists=False
        )
        assert comparison.actual_start is None
        assert "does not exist" in comparison.differences[0].message


class TestBuild:
    """Test PatchContext construction."""

    def test_rejected_and_offset_both_in_context(self):
        """Rejected and offset files each get their own context."""
        parsed = parse_patch(PATCH)
        context = ContextBuilder().build(parsed, make_apply_result(parsed), make_snapshot())

        assert context.rejected_paths == ["config.txt"]
        assert context.offset_paths == ["notes.txt"]
        assert len(context.rejected_hunks) == 1
        assert context.rejected_hunks[0].comparison.actual == ("beta", "GAMMA", "delta")

        notes = context.file_contexts["notes.txt"]
        assert notes.note == OFFSET_NOTE
        assert notes.excerpts[0].start_line == 1
        assert "three" in notes.excerpts[0].lines

        assert context.file_contexts["readme.txt"].note == CLEAN_NOTE

    def test_context_reads_only_from_snapshot(self):
        """Excerpts reflect the snapshot even if the file changed since."""
        parsed = parse_patch(PATCH)
        snapshot = make_snapshot()
        context = ContextBuilder().build(parsed, make_apply_result(parsed), snapshot)

        config = context.file_contexts["config.txt"]
        assert config.excerpts[0].lines == ("alpha", "beta", "GAMMA", "delta", "epsilon")

    def test_with_failure_replaces_signal(self):
        """A new failure signal replaces the previous one."""
        parsed = parse_patch(PATCH)
        builder = ContextBuilder()
        context = builder.build(
            parsed, make_apply_result(parsed), make_snapshot(), last_failure_signal="first"
        )

        updated = builder.with_failure(context, "second", attempt=3)

        assert updated.last_failure_signal == "second"
        assert updated.attempt == 3
        assert context.last_failure_signal == "first"
        assert updated.rejected_hunks == context.rejected_hunks

    def test_describe_failure(self):
        """The failure signal names file, line and diagnostic."""
        result = ApplyResult(
            outcomes={
                "config.txt": Rejected(
                    rejected_fragments=("@@ -2,3 +2,4 @@\n beta",),
                    diagnostics=("patch failed at line 2",),
                ),
                "readme.txt": AppliedClean(),
            }
        )
        signal = describe_failure(result)

        assert "config.txt: hunk at line 2 was rejected" in signal
        assert "config.txt: patch failed at line 2" in signal
        assert "readme.txt" not in signal

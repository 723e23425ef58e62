"""
Patch operations module for processing a series of patch files.
"""

import json
import logging
from pathlib import Path

from .constants import (
    ERROR_MESSAGES,
    PATCH_EXTENSIONS,
    SUCCESS_MESSAGES,
    WARNING_MESSAGES,
)
from .diff_parser import parse_patch
from .exceptions import AttemptsExhaustedError, GitOperationError, PatchMendError
from .models import AppliedWithOffset, PatchFailure, ReconcileResult, ReconcileStatus
from .orchestrator import FixOrchestrator
from .utils import ensure_trailing_newline, run_git_command

logger = logging.getLogger(__name__)


def write_patch_file(path: Path, text: str) -> None:
    """Write patch text to disk; git apply rejects a patch without a final newline."""
    path.write_text(
        ensure_trailing_newline(text), encoding="utf-8", errors="surrogateescape"
    )


def discover_patches(patches_path: Path) -> list[Path]:
    """
    Find the patch files to process.

    Args:
        patches_path: A single patch file or a directory of patches

    Returns:
        Patch files in the order they must be applied
    """
    if patches_path.is_file():
        return [patches_path]
    return sorted(
        patch_file
        for patch_file in patches_path.iterdir()
        if patch_file.is_file() and patch_file.suffix.lower() in PATCH_EXTENSIONS
    )


def commit_message_for(patch_text: str, fallback: str) -> str:
    try:
        subject = parse_patch(patch_text).metadata.subject
    except PatchMendError:
        subject = ""
    subject = " ".join(subject.split())
    if subject.startswith("[PATCH"):
        subject = subject.split("]", 1)[-1].strip()
    return subject or fallback


class PatchManager:
    """Applies a series of patches to a checkout, repairing the ones that conflict."""

    def __init__(
        self,
        patches_path: str,
        repo_dir: str,
        orchestrator: FixOrchestrator,
        json_output: bool = False,
        commit: bool = True,
        write_back: bool = True,
    ):
        self.patches_path = patches_path
        self.repo_dir = Path(repo_dir)
        self.orchestrator = orchestrator
        self.json_output = json_output
        self.commit = commit
        self.write_back = write_back

    def _print(self, message: str) -> None:
        if not self.json_output:
            print(message)

    def commit_changes(self, message: str) -> None:
        """Commit the applied patch so the next patch is reverted to a tree that includes it."""
        run_git_command(["git", "add", "-A"], cwd=self.repo_dir)
        result = run_git_command(
            ["git", "commit", "-m", message], cwd=self.repo_dir, check=False
        )
        if result.returncode != 0:
            if "nothing to commit" in result.stdout:
                logger.info("No changes to commit")
                return
            raise GitOperationError(f"git commit failed:\n{result.stdout}")
        logger.info("Committed: %s", message)

    def _report_success(self, patch_file: Path, result: ReconcileResult) -> None:
        if result.status is ReconcileStatus.APPLIED_CLEAN:
            self._print(SUCCESS_MESSAGES["PATCH_APPLIED"].format(name=patch_file.name))
            return
        if result.status is ReconcileStatus.APPLIED_WITH_OFFSET:
            offset_files = [
                path
                for path, outcome in result.initial_outcomes.items()
                if isinstance(outcome, AppliedWithOffset)
            ]
            self._print(
                SUCCESS_MESSAGES["PATCH_APPLIED_OFFSET"].format(
                    name=patch_file.name, files=", ".join(offset_files)
                )
            )
            return
        self._print(
            SUCCESS_MESSAGES["PATCH_REGENERATED"].format(
                name=patch_file.name, attempt=result.attempts
            )
        )
        if result.cost:
            self._print(f"  Estimated LLM cost: ${result.cost:.4f}")

    async def reconcile_patch(self, patch_file: Path) -> PatchFailure | None:
        """
        Reconcile one patch file against the checkout.

        Returns:
            None on success, otherwise the failure to report
        """
        self._print(f"\nApplying patch: {patch_file.name}")
        patch_text = patch_file.read_text(encoding="utf-8", errors="surrogateescape")

        try:
            result = await self.orchestrator.reconcile(patch_text, self.repo_dir)
        except AttemptsExhaustedError as e:
            error_output = e.last_failure_signal or str(e)
        except PatchMendError as e:
            error_output = str(e)
        else:
            self._report_success(patch_file, result)
            if result.status is ReconcileStatus.FIXED and self.write_back:
                write_patch_file(patch_file, result.patch_text)
                self._print(f"  Updated {patch_file}")
            if self.commit:
                self.commit_changes(commit_message_for(patch_text, patch_file.stem))
            return None

        self._print(WARNING_MESSAGES["PATCH_FAILED"].format(name=patch_file.name))
        for line in error_output.splitlines():
            self._print(f"  {line}")
        return PatchFailure(patch_name=patch_file.name, error_output=error_output)

    def generate_failure_report(
        self, failed_patches: list[PatchFailure], skipped: list[str]
    ) -> str:
        """
        Generate report content for patches that could not be fixed.

        Args:
            failed_patches: Patches that could not be fixed
            skipped: Names of patches not attempted after the failure

        Returns:
            Formatted report text
        """
        content_lines = [f"Some patches failed to apply to {self.repo_dir}:", ""]

        for patch_failure in failed_patches:
            content_lines.append(f"Applying patch: {patch_failure.patch_name}")
            content_lines.append(
                WARNING_MESSAGES["PATCH_FAILED"].format(name=patch_failure.patch_name)
            )
            content_lines.append(patch_failure.error_output)
            content_lines.append("")

        if skipped:
            content_lines.append(f"Not attempted: {', '.join(skipped)}")
            content_lines.append("")

        content_lines.append("You'll need to fix these patches manually.")
        return "\n".join(content_lines)

    async def process_patches(self) -> bool:
        """
        Apply every patch in order, stopping at the first one that cannot be fixed.

        Returns:
            True if all patches applied (possibly after regeneration), False otherwise
        """
        patches_path = Path(self.patches_path)
        if not patches_path.exists():
            self._print(ERROR_MESSAGES["PATCHES_PATH_NOT_EXIST"].format(path=patches_path))
            return False
        if not self.repo_dir.is_dir():
            self._print(ERROR_MESSAGES["REPO_DIR_NOT_EXIST"].format(path=self.repo_dir))
            return False

        patch_files = discover_patches(patches_path)
        if not patch_files:
            self._print(ERROR_MESSAGES["NO_PATCHES"].format(path=patches_path))
            return True  # No patches to apply is considered success

        self._print(f"Found {len(patch_files)} patch files to apply")

        failed_patches: list[PatchFailure] = []
        skipped: list[str] = []
        for index, patch_file in enumerate(patch_files):
            try:
                failure = await self.reconcile_patch(patch_file)
            except GitOperationError as e:
                failure = PatchFailure(patch_name=patch_file.name, error_output=str(e))
                self._print(f"Error during git operation: {e}")
            if failure:
                failed_patches.append(failure)
                # Later patches usually depend on this one
                skipped = [p.name for p in patch_files[index + 1 :]]
                break

        if self.json_output:
            if failed_patches:
                json_output_data = {
                    "title": f"Failed to apply patches to {self.repo_dir}",
                    "content": self.generate_failure_report(failed_patches, skipped),
                }
                print(json.dumps(json_output_data, indent=2))
        else:
            print(f"\n{'=' * 50}")
            if failed_patches:
                print(WARNING_MESSAGES["SOME_PATCHES_FAILED"])
                if skipped:
                    print(f"Not attempted: {', '.join(skipped)}")
            else:
                print(SUCCESS_MESSAGES["ALL_PATCHES_FIXED"])

        return not failed_patches

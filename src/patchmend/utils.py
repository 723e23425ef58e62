"""
Utility functions for patchmend.
"""

import re
import subprocess
from pathlib import Path

from .constants import DEFAULT_GIT_TIMEOUT, MAX_SIGNAL_LINES
from .exceptions import GitOperationError


def run_git_command(
    command: list[str],
    cwd: Path | None = None,
    timeout: float | None = DEFAULT_GIT_TIMEOUT,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """
    Run a git command and handle errors.

    Standard error is merged into standard output so that progress messages
    keep their relative order.

    Args:
        command: Git command as list of strings
        cwd: Working directory for the command
        timeout: Command timeout in seconds
        check: Raise when the command exits with a non-zero status

    Returns:
        Completed process result

    Raises:
        GitOperationError: If git command fails, times out or cannot be started
    """
    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise GitOperationError(f"Git command timed out: {' '.join(command)}") from e
    except OSError as e:
        raise GitOperationError(f"Git command error: {' '.join(command)}: {e}") from e

    if check and result.returncode != 0:
        raise GitOperationError(
            f"Git command failed: {' '.join(command)}\nOutput: {result.stdout}"
        )
    return result


def ensure_trailing_newline(text: str) -> str:
    return text if text.endswith("\n") else text + "\n"


def tail_lines(text: str, limit: int = MAX_SIGNAL_LINES) -> str:
    """Keep only the last ``limit`` lines of a long diagnostic."""
    lines = text.rstrip("\n").split("\n")
    if len(lines) <= limit:
        return text.rstrip("\n")
    return "...(truncated)...\n" + "\n".join(lines[-limit:])


def clean_reasoning_response(content: str) -> str:
    """
    Extract the final response from reasoning model output.

    Reasoning models often include reasoning steps wrapped in tags like:
    <thinking>...</thinking> or <reasoning>...</reasoning>

    This method extracts only the final answer that comes after these reasoning blocks.

    Args:
        content: Raw content from the model

    Returns:
        Cleaned content without reasoning tags
    """
    if not content:
        return content

    # Common reasoning tags used by various models (properly closed tags)
    closed_tag_patterns = [
        r"<thinking>.*?</thinking>",
        r"<reasoning>.*?</reasoning>",
        r"<analysis>.*?</analysis>",
        r"<internal_thought>.*?</internal_thought>",
        r"<think[^>]*>.*?</think>",
        r"<reason>.*?</reason>",
    ]

    cleaned_content = content
    for pattern in closed_tag_patterns:
        cleaned_content = re.sub(
            pattern, "", cleaned_content, flags=re.DOTALL | re.IGNORECASE
        )

    # Unclosed tag: drop everything up to the start of the patch itself
    if re.match(
        r"^\s*<(think|thinking|reasoning|analysis)", cleaned_content, re.IGNORECASE
    ):
        match = re.search(r"^(From |diff --git|--- )", cleaned_content, re.MULTILINE)
        if match:
            cleaned_content = cleaned_content[match.start() :]

    cleaned_content = cleaned_content.strip()

    # If the cleaned content is empty or too short, return original
    if len(cleaned_content) < 10:
        return content

    return cleaned_content


def extract_patch_from_response(response: str) -> str:
    """
    Extract patch text from a model response.

    The model may wrap the patch in markdown code blocks or add explanations
    before it.

    Args:
        response: Response text with reasoning tags already removed

    Returns:
        The patch text, or an empty string if none was found
    """
    if "```" in response:
        for part in response.split("```")[1::2]:
            body = re.sub(r"^(diff|patch)?[ \t]*\n", "", part, count=1)
            stripped = body.strip("\n")
            if stripped.startswith(("From ", "diff --git", "--- ")):
                return stripped

    lines = response.split("\n")
    for index, line in enumerate(lines):
        if line.startswith(("From ", "diff --git")):
            return "\n".join(lines[index:]).strip("\n")

    return ""

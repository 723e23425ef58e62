"""
LLM client module for patch fix generation.
"""

import logging
import os

import openai

from .constants import (
    DEFAULT_MODEL_NAME,
    DEFAULT_OPENAI_ENDPOINT,
    DEFAULT_TEMPERATURE,
    ENV_VARS,
    INPUT_COST_PER_1K,
    MAX_OUTPUT_TOKENS,
    MIN_OUTPUT_TOKENS,
    OUTPUT_COST_PER_1K,
    OUTPUT_TOKENS_PER_FILE,
)
from .diff_parser import missing_paths, parse_patch
from .exceptions import FixGenerationError, MalformedPatchError
from .models import CandidateFix, ParsedPatch, PatchContext, RejectedHunk
from .utils import clean_reasoning_response, extract_patch_from_response

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE = """You are an expert patch regeneration system that creates unified diff patches. You understand patch formats and can adapt patches to an evolved codebase while preserving the original intent.

Key principles:
1. PRESERVE INTENT: every line the original patch removes must still be removed, every line it adds must still be added
2. ADAPT LOCATIONS: use the expected vs actual comparison to find where the patched code lives now
3. KEEP EVERY FILE: files that applied cleanly or with an offset must still be part of the regenerated patch
4. KEEP METADATA: the From, Date and Subject header and the commit message are reproduced exactly

Always generate a valid unified diff that applies with 'git apply' and achieves the same end result as the original patch intended."""


def calculate_max_tokens(patch: ParsedPatch) -> int:
    """Output budget sized to the patch: roughly its length plus room per file."""
    estimate = len(patch.text) // 3 * 2 + OUTPUT_TOKENS_PER_FILE * len(patch.files)
    return max(MIN_OUTPUT_TOKENS, min(MAX_OUTPUT_TOKENS, estimate))


def calculate_cost(input_tokens: int, output_tokens: int) -> float:
    return (
        input_tokens / 1000 * INPUT_COST_PER_1K
        + output_tokens / 1000 * OUTPUT_COST_PER_1K
    )


def _render_rejected_hunk(hunk: RejectedHunk) -> str:
    comparison = hunk.comparison
    where = (
        f"best match at line {comparison.actual_start}"
        if comparison.actual_start is not None
        else "no match found"
    )
    parts = [
        f"#### {hunk.path}, hunk {hunk.index} (expected at line {hunk.expected_line}, {where})",
        "Rejected fragment:",
        "```diff",
        hunk.fragment,
        "```",
        "Expected lines:",
        "```",
        "\n".join(comparison.expected),
        "```",
        "Actual lines in the current file:",
        "```",
        "\n".join(comparison.actual),
        "```",
    ]
    if comparison.differences:
        parts.append("Differences:")
        parts.extend(f"- {difference}" for difference in comparison.differences)
    return "\n".join(parts)


def render_prompt(context: PatchContext) -> str:
    """Render a PatchContext into the user prompt for one generator call."""
    sections = [
        "A patch no longer applies cleanly to the current source tree. "
        "Regenerate it so that it applies cleanly and makes the same changes.",
    ]

    if context.metadata.raw_header:
        sections.append(
            "## Patch metadata (reproduce exactly)\n```\n"
            + context.metadata.raw_header
            + "\n```"
        )

    sections.append("## Original patch\n```diff\n" + context.original_patch.rstrip("\n") + "\n```")

    if context.rejected_hunks:
        sections.append(
            "## Rejected hunks\n"
            + "\n\n".join(_render_rejected_hunk(hunk) for hunk in context.rejected_hunks)
        )

    file_sections = []
    for path, file_context in context.file_contexts.items():
        lines = [f"### {path}", f"Status: {file_context.note}"]
        for excerpt in file_context.excerpts:
            lines.append(f"Lines {excerpt.start_line}-{excerpt.end_line}:")
            lines.append("```")
            lines.append(excerpt.render())
            lines.append("```")
        file_sections.append("\n".join(lines))
    if file_sections:
        sections.append("## Current file content\n" + "\n\n".join(file_sections))

    if context.last_failure_signal:
        sections.append(
            f"## Previous attempt failed (attempt {context.attempt - 1})\n```\n"
            + context.last_failure_signal
            + "\n```"
        )

    sections.append(
        "Return ONLY the complete regenerated patch, starting with the metadata "
        "header if there is one. Include every file of the original patch."
    )
    return "\n\n".join(sections)


class LLMClient:
    """Fix generator backed by an OpenAI-compatible chat completions API."""

    def __init__(self, api_key: str, timeout: float | None = None):
        """
        Initialize LLM client.

        Args:
            api_key: OpenAI API key
            timeout: Request timeout in seconds
        """
        base_url = os.getenv(ENV_VARS["OPENAI_ENDPOINT"], DEFAULT_OPENAI_ENDPOINT)
        self.model_name = os.getenv(ENV_VARS["MODEL_NAME"], DEFAULT_MODEL_NAME)
        self.timeout = timeout
        self.client = openai.OpenAI(api_key=api_key, base_url=base_url)

    def generate(self, context: PatchContext) -> CandidateFix:
        """
        Ask the model for a regenerated patch.

        Args:
            context: Context for this attempt

        Returns:
            The candidate patch with token usage and cost

        Raises:
            FixGenerationError: If the request fails, the response is empty,
                truncated, or contains no usable patch
        """
        max_tokens = calculate_max_tokens(context.patch)
        prompt = render_prompt(context)
        logger.info(
            "Requesting fix from %s (attempt %d, max_tokens=%d, prompt=%d chars)",
            self.model_name,
            context.attempt,
            max_tokens,
            len(prompt),
        )

        try:
            response = self.client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": SYSTEM_MESSAGE},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=max_tokens,
                temperature=DEFAULT_TEMPERATURE,
                timeout=self.timeout,
            )
        except openai.OpenAIError as e:
            raise FixGenerationError(f"LLM patch regeneration failed: {e}") from e

        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0
        cost = calculate_cost(input_tokens, output_tokens)
        logger.info(
            "LLM usage: %d input tokens, %d output tokens, $%.4f",
            input_tokens,
            output_tokens,
            cost,
        )

        # Rejected responses are still billed
        if not response.choices:
            raise FixGenerationError("LLM returned no choices", cost=cost)

        choice = response.choices[0]
        if choice.finish_reason == "length" or output_tokens >= max_tokens:
            raise FixGenerationError(
                f"Response truncated at {output_tokens} tokens (limit {max_tokens})",
                cost=cost,
            )

        content = choice.message.content
        if not content:
            raise FixGenerationError("LLM returned an empty response", cost=cost)

        # Handle reasoning models that include reasoning steps
        patch_text = extract_patch_from_response(clean_reasoning_response(content))
        if not patch_text:
            raise FixGenerationError("No patch found in LLM response", cost=cost)

        try:
            candidate = parse_patch(patch_text)
        except MalformedPatchError as e:
            raise FixGenerationError(
                f"LLM returned a malformed patch: {e}", cost=cost
            ) from e

        missing = missing_paths(context.patch, candidate)
        if missing:
            raise FixGenerationError(
                f"Response appears truncated: {len(context.patch.files) - len(missing)} of "
                f"{len(context.patch.files)} files present (missing {', '.join(missing)})",
                cost=cost,
            )

        return CandidateFix(
            patch=patch_text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
        )

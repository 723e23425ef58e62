"""
Constants and configuration values for patchmend.
"""

# Default values for configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RATE_LIMIT_SECONDS = 15.0  # 4 requests/min
DEFAULT_GENERATOR_TIMEOUT = 600.0
DEFAULT_VALIDATOR_TIMEOUT = 1800.0
# Extra time the orchestrator allows a validator to enforce its own timeout
VALIDATOR_GRACE_SECONDS = 30.0
DEFAULT_GIT_TIMEOUT = 120
DEFAULT_CONTEXT_RADIUS = 10
DEFAULT_CLEAN_RADIUS = 3
DEFAULT_MATCH_SLACK = 3
DEFAULT_COMPLEXITY_THRESHOLD = 10
DEFAULT_TEMPERATURE = 0.1
DEFAULT_VALIDATE_COMMAND = "make build"

# Output budget for the fix generator
MIN_OUTPUT_TOKENS = 4096
MAX_OUTPUT_TOKENS = 32000
OUTPUT_TOKENS_PER_FILE = 512

# Per-1K token prices used for cost accounting
INPUT_COST_PER_1K = 0.003
OUTPUT_COST_PER_1K = 0.015

# Semantic drift tolerance: candidate may change at most this ratio of lines
MAX_DRIFT_RATIO = 1.5

# Keep only the tail of long failure signals
MAX_SIGNAL_LINES = 500

# Patch file extensions
PATCH_EXTENSIONS = {".patch", ".diff"}

REJECT_SUFFIX = ".rej"

# OpenAI model configuration
DEFAULT_OPENAI_ENDPOINT = "https://models.github.ai/inference"
DEFAULT_MODEL_NAME = "openai/gpt-4.1"

# Environment variable names
ENV_VARS = {
    "OPENAI_API_KEY": "OPENAI_API_KEY",
    "OPENAI_ENDPOINT": "OPENAI_ENDPOINT_URL",
    "MODEL_NAME": "MODEL_NAME",
    "MAX_ATTEMPTS": "PATCHMEND_MAX_ATTEMPTS",
    "RATE_LIMIT_SECONDS": "PATCHMEND_RATE_LIMIT_SECONDS",
    "GENERATOR_TIMEOUT": "PATCHMEND_GENERATOR_TIMEOUT",
    "VALIDATOR_TIMEOUT": "PATCHMEND_VALIDATOR_TIMEOUT",
    "CONTEXT_RADIUS": "PATCHMEND_CONTEXT_RADIUS",
    "COMPLEXITY_THRESHOLD": "PATCHMEND_COMPLEXITY_THRESHOLD",
    "SKIP_VALIDATION": "SKIP_VALIDATION",
}

# Error messages
ERROR_MESSAGES = {
    "NO_PATCHES": "No patch files (.patch or .diff) found at '{path}'",
    "PATCHES_PATH_NOT_EXIST": "Patches path '{path}' does not exist",
    "REPO_DIR_NOT_EXIST": "Repository directory '{path}' does not exist or is not a directory",
    "INVALID_SETTING": "Invalid value for {name}: {value!r}",
}

# Success messages
SUCCESS_MESSAGES = {
    "ALL_PATCHES_FIXED": "✓ ALL PATCHES APPLY",
    "PATCH_APPLIED": "✓ Patch {name} applies cleanly",
    "PATCH_APPLIED_OFFSET": "✓ Patch {name} applies with offsets: {files}",
    "PATCH_REGENERATED": "✓ Successfully regenerated patch for {name} (attempt {attempt})",
}

# Warning messages
WARNING_MESSAGES = {
    "SOME_PATCHES_FAILED": "✗ SOME PATCHES COULD NOT BE FIXED",
    "PATCH_FAILED": "✗ Patch {name} could not be fixed",
}

# Offset files must never be treated as needing no action
OFFSET_NOTE = (
    "applied successfully but at a different position than the patch expected; "
    "must still be included in any regenerated patch with corrected line numbers"
)
CLEAN_NOTE = "applied cleanly; leave this file's change as-is"
REJECTED_NOTE = "failed to apply; see the expected vs actual comparison"

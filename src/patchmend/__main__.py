#!/usr/bin/env python3
"""
patchmend - Patch Reconciliation Engine

Entry point for running patchmend as a module.
"""

import argparse
import asyncio
import dataclasses
import logging
import sys

from .applier import ApplicationEngine
from .config import ReconcileSettings, get_required_env_var, load_environment_variables
from .constants import DEFAULT_VALIDATE_COMMAND, VALIDATOR_GRACE_SECONDS
from .context_builder import ContextBuilder
from .exceptions import ConfigurationError
from .llm_client import LLMClient
from .orchestrator import FixOrchestrator
from .patch_operations import PatchManager
from .rate_limit import IntervalGate
from .validator import CommandValidator, CompositeValidator, SemanticDriftValidator


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="patchmend - repair patches that no longer apply cleanly",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m patchmend ./patches --repo-dir ./checkout
  python -m patchmend ./patches/0001-fix.patch --repo-dir ./checkout --max-attempts 5
  python -m patchmend ./patches --repo-dir ./checkout --validate-cmd "make test"
  python -m patchmend ./patches --repo-dir ./checkout --skip-validation --json-output
        """,
    )

    parser.add_argument(
        "patches",
        help="Patch file, or directory of .patch/.diff files applied in sorted order",
    )

    parser.add_argument(
        "--repo-dir",
        type=str,
        required=True,
        help="Path to the git checkout the patches are applied to.",
    )

    parser.add_argument(
        "--max-attempts",
        type=int,
        help="Maximum number of fix attempts per patch. Default is 3.",
    )

    parser.add_argument(
        "--validate-cmd",
        type=str,
        default=DEFAULT_VALIDATE_COMMAND,
        help=f"Command run in the checkout to validate a regenerated patch. Default is '{DEFAULT_VALIDATE_COMMAND}'.",
    )

    parser.add_argument(
        "--skip-validation",
        action="store_true",
        help="Skip the validation command (semantic drift is still checked). Also enabled by SKIP_VALIDATION=true.",
    )

    parser.add_argument(
        "--complexity-threshold",
        type=int,
        help="Give up without calling the LLM when rejected hunks plus rejected files exceed this value. Default is 10.",
    )

    parser.add_argument(
        "--context-radius",
        type=int,
        help="Lines of file content shown around each conflict. Default is 10.",
    )

    parser.add_argument(
        "--rate-limit-seconds",
        type=float,
        help="Minimum interval between LLM calls. Default is 15.",
    )

    parser.add_argument(
        "--no-commit",
        action="store_true",
        help="Do not commit each applied patch. Only useful with a single patch.",
    )

    parser.add_argument(
        "--json-output",
        action="store_true",
        help="Output patch failures in JSON format suitable for creating tickets.",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging.",
    )

    args = parser.parse_args(argv)

    for name in ("max_attempts", "complexity_threshold", "context_radius"):
        value = getattr(args, name)
        if value is not None and value <= 0:
            parser.error(f"--{name.replace('_', '-')} must be a positive integer")
    if args.rate_limit_seconds is not None and args.rate_limit_seconds < 0:
        parser.error("--rate-limit-seconds must not be negative")

    return args


def build_settings(args) -> ReconcileSettings:
    """Merge command line overrides into the environment settings."""
    settings = ReconcileSettings.from_env()
    overrides = {
        "max_attempts": args.max_attempts,
        "complexity_threshold": args.complexity_threshold,
        "context_radius": args.context_radius,
        "rate_limit_seconds": args.rate_limit_seconds,
    }
    values = {
        name: value
        for name, value in overrides.items()
        if value is not None
    }
    if args.skip_validation:
        values["skip_validation"] = True
    return dataclasses.replace(settings, **values)


def build_orchestrator(args, settings: ReconcileSettings, api_key: str) -> FixOrchestrator:
    validators = [SemanticDriftValidator()]
    if not settings.skip_validation:
        validators.append(
            CommandValidator(args.validate_cmd, timeout=settings.validator_timeout)
        )
    return FixOrchestrator(
        engine=ApplicationEngine(),
        builder=ContextBuilder(radius=settings.context_radius),
        generator=LLMClient(api_key, timeout=settings.generator_timeout),
        validator=CompositeValidator(*validators),
        gate=IntervalGate(settings.rate_limit_seconds),
        max_attempts=settings.max_attempts,
        generator_timeout=settings.generator_timeout,
        validator_timeout=settings.validator_timeout + VALIDATOR_GRACE_SECONDS,
        complexity_threshold=settings.complexity_threshold,
    )


async def async_main():
    # Load environment variables from .env file if it exists
    load_environment_variables()

    args = parse_arguments()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = build_settings(args)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)

    openai_api_key = get_required_env_var(
        "OPENAI_API_KEY",
        "This is required to regenerate patches that no longer apply",
    )

    manager = PatchManager(
        args.patches,
        args.repo_dir,
        build_orchestrator(args, settings, openai_api_key),
        json_output=args.json_output,
        commit=not args.no_commit,
    )

    try:
        success = await manager.process_patches()
    except Exception as e:
        print(f"Error during patch processing: {e}")
        success = False

    if not success:
        sys.exit(1)


def main():
    """Synchronous entry point for the patchmend command."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()

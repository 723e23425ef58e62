"""Tests for command line handling."""

import os
from unittest.mock import patch

import pytest

from patchmend.__main__ import build_orchestrator, build_settings, parse_arguments
from patchmend.validator import CommandValidator, SemanticDriftValidator


def test_parse_arguments_defaults():
    """Only the patches path and checkout are required."""
    args = parse_arguments(["patches", "--repo-dir", "checkout"])

    assert args.patches == "patches"
    assert args.repo_dir == "checkout"
    assert args.max_attempts is None
    assert args.validate_cmd == "make build"
    assert not args.no_commit
    assert not args.json_output


def test_parse_arguments_rejects_non_positive_values():
    """Zero or negative counts are refused by the parser."""
    with pytest.raises(SystemExit):
        parse_arguments(["patches", "--repo-dir", "checkout", "--max-attempts", "0"])
    with pytest.raises(SystemExit):
        parse_arguments(["patches", "--repo-dir", "checkout", "--rate-limit-seconds", "-1"])


def test_command_line_overrides_environment():
    """Flags take precedence over environment settings."""
    args = parse_arguments(
        ["patches", "--repo-dir", "checkout", "--max-attempts", "7", "--skip-validation"]
    )
    env = {"PATCHMEND_MAX_ATTEMPTS": "2", "PATCHMEND_CONTEXT_RADIUS": "4"}
    with patch.dict(os.environ, env, clear=True):
        settings = build_settings(args)

    assert settings.max_attempts == 7
    assert settings.context_radius == 4
    assert settings.skip_validation


def test_build_orchestrator_validators():
    """The build command is skipped when validation is disabled."""
    args = parse_arguments(["patches", "--repo-dir", "checkout", "--validate-cmd", "make test"])
    with patch.dict(os.environ, {}, clear=True):
        settings = build_settings(args)

    orchestrator = build_orchestrator(args, settings, "fake-key")
    validators = orchestrator.validator.validators
    assert isinstance(validators[0], SemanticDriftValidator)
    assert isinstance(validators[1], CommandValidator)
    assert validators[1].command == "make test"
    assert validators[1].timeout == settings.validator_timeout
    assert orchestrator.validator_timeout > settings.validator_timeout

    with patch.dict(os.environ, {"SKIP_VALIDATION": "true"}, clear=True):
        skip_settings = build_settings(args)
    skipped = build_orchestrator(args, skip_settings, "fake-key")
    assert len(skipped.validator.validators) == 1

"""Tests for pydantic input and policy models."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from stagegate.models import GatePolicySpec, StageFlags, coerce_flag


class TestCoerceFlag:
    """Tests for dispatch input coercion."""

    @pytest.mark.parametrize("value", [True, "true", "TRUE", " yes ", "1", "on", 1])
    def test_true_values(self, value: object) -> None:
        """Test recognised true spellings."""
        assert coerce_flag(value) is True

    @pytest.mark.parametrize("value", [False, "false", "0", "no", "off", "", None, 0])
    def test_false_values(self, value: object) -> None:
        """Test recognised false spellings."""
        assert coerce_flag(value) is False

    @pytest.mark.parametrize("value", ["maybe", "ture", "2", 2, 1.0, ["true"]])
    def test_malformed_values_fail_closed(self, value: object) -> None:
        """Test that anything unrecognised is false."""
        assert coerce_flag(value) is False

    def test_malformed_value_logs_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that a malformed string is reported."""
        with caplog.at_level(logging.WARNING, logger="stagegate.models"):
            coerce_flag("maybe", "doApply")

        assert "Malformed dispatch input" in caplog.text


class TestStageFlags:
    """Tests for StageFlags."""

    def test_defaults_all_false(self) -> None:
        """Test default flags."""
        flags = StageFlags()
        assert not flags.any_set()

    def test_camel_case_inputs(self) -> None:
        """Test parsing camelCase dispatch inputs."""
        flags = StageFlags.from_inputs({"doApply": "true", "useEnvironmentApply": "true"})

        assert flags.do_apply is True
        assert flags.use_environment_apply is True
        assert flags.do_destroy is False

    def test_snake_case_inputs(self) -> None:
        """Test parsing snake_case dispatch inputs."""
        flags = StageFlags.from_inputs({"do_destroy": True, "use_environment_destroy": "false"})

        assert flags.do_destroy is True
        assert flags.use_environment_destroy is False

    def test_malformed_input_is_false(self) -> None:
        """Test that a malformed flag does not raise and evaluates false."""
        flags = StageFlags.from_inputs({"doDestroy": "definitely"})

        assert flags.do_destroy is False

    def test_unknown_inputs_ignored(self) -> None:
        """Test that unrelated dispatch inputs are ignored."""
        flags = StageFlags.from_inputs({"terraform_version": "1.7.5", "doPlan": "true"})

        assert flags.do_plan is True

    @pytest.mark.parametrize("inputs", [None, {}])
    def test_empty_inputs(self, inputs: dict[str, str] | None) -> None:
        """Test that missing inputs give default flags."""
        assert StageFlags.from_inputs(inputs) == StageFlags()

    def test_frozen(self) -> None:
        """Test that flags cannot be mutated."""
        flags = StageFlags()
        with pytest.raises(ValidationError):
            flags.do_apply = True  # type: ignore[misc]


class TestGatePolicySpec:
    """Tests for GatePolicySpec."""

    def test_defaults(self) -> None:
        """Test default policy values."""
        policy = GatePolicySpec()

        assert policy.branches == ["main"]
        assert policy.paths == []
        assert policy.approval_environments == {}
        assert policy.concurrency_prefix == "terraform"

    def test_aliases(self) -> None:
        """Test camelCase policy keys."""
        policy = GatePolicySpec.model_validate(
            {
                "branches": ["main", "release/*"],
                "paths": ["terraform/**"],
                "approvalEnvironments": {"apply": "prod-approvers"},
                "concurrencyPrefix": "tf",
            }
        )

        assert policy.branches == ["main", "release/*"]
        assert policy.approval_environment_for("apply", "prod") == "prod-approvers"
        assert policy.approval_environment_for("destroy", "prod") == "prod"
        assert policy.concurrency_prefix == "tf"

    def test_unknown_stage_rejected(self) -> None:
        """Test that approval environments for unknown stages are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            GatePolicySpec.model_validate({"approvalEnvironments": {"deploy": "prod"}})

        assert "unknown stage" in str(exc_info.value)

    def test_invalid_environment_name_rejected(self) -> None:
        """Test that invalid environment names are rejected."""
        with pytest.raises(ValidationError):
            GatePolicySpec.model_validate({"approvalEnvironments": {"apply": "-bad/name"}})

    def test_empty_pattern_rejected(self) -> None:
        """Test that blank branch patterns are rejected."""
        with pytest.raises(ValidationError):
            GatePolicySpec.model_validate({"branches": ["main", "  "]})

    def test_invalid_concurrency_prefix(self) -> None:
        """Test concurrency prefix validation."""
        with pytest.raises(ValidationError):
            GatePolicySpec.model_validate({"concurrencyPrefix": "Bad Prefix"})

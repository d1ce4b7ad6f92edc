"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from stagegate.config import Config, ConfigurationError, StateBackendConfig


class TestConfig:
    """Tests for Config class."""

    def test_valid_config(self) -> None:
        """Test creating a valid configuration."""
        config = Config(environment="prod")

        assert config.environment == "prod"
        assert config.require_oidc is True
        assert config.policy_file is None
        assert config.state_backend.is_configured is False

    def test_missing_environment(self) -> None:
        """Test that a missing environment raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(environment="")

        assert "STAGEGATE_ENVIRONMENT" in str(exc_info.value)

    @pytest.mark.parametrize("environment", ["Prod", "prod_1", "-prod", "p", "prod-"])
    def test_invalid_environment(self, environment: str) -> None:
        """Test that malformed environment names are rejected."""
        with pytest.raises(ConfigurationError):
            Config(environment=environment)

    def test_missing_policy_file(self, tmp_path: Path) -> None:
        """Test that a configured policy file must exist."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(environment="dev", policy_file=tmp_path / "missing.yaml")

        assert "Policy file does not exist" in str(exc_info.value)

    def test_errors_are_collected(self, tmp_path: Path) -> None:
        """Test that all validation errors are reported together."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                environment="",
                policy_file=tmp_path / "missing.yaml",
                state_backend=StateBackendConfig(storage_account_name="Not_Valid"),
            )

        message = str(exc_info.value)
        assert "STAGEGATE_ENVIRONMENT" in message
        assert "Policy file" in message
        assert "STAGEGATE_STATE_STORAGE_ACCOUNT" in message

    def test_from_env(self, tmp_path: Path) -> None:
        """Test loading configuration from environment."""
        policy = tmp_path / "gates.yaml"
        policy.write_text("branches: [main]\n", encoding="utf-8")

        env = {
            "STAGEGATE_ENVIRONMENT": "staging",
            "STAGEGATE_POLICY_FILE": str(policy),
            "STAGEGATE_REQUIRE_OIDC": "false",
            "STAGEGATE_STATE_RESOURCE_GROUP": "rg-tfstate",
            "STAGEGATE_STATE_STORAGE_ACCOUNT": "sttfstate001",
            "GITHUB_OUTPUT": str(tmp_path / "output"),
            "GITHUB_STEP_SUMMARY": str(tmp_path / "summary"),
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.environment == "staging"
        assert config.policy_file == policy
        assert config.require_oidc is False
        assert config.state_backend.is_configured is True
        assert config.state_backend.container_name == "tfstate"
        assert config.output_file == tmp_path / "output"
        assert config.summary_file == tmp_path / "summary"

    def test_from_env_defaults(self) -> None:
        """Test defaults when only the environment is set."""
        with patch.dict(os.environ, {"STAGEGATE_ENVIRONMENT": "dev"}, clear=True):
            config = Config.from_env()

        assert config.require_oidc is True
        assert config.output_file is None
        assert config.summary_file is None


class TestStateBackendConfig:
    """Tests for StateBackendConfig validation."""

    def test_valid_backend(self) -> None:
        """Test a valid backend has no errors."""
        backend = StateBackendConfig(
            resource_group_name="rg-tfstate",
            storage_account_name="sttfstate001",
            container_name="tfstate",
        )

        assert backend.validate() == []
        assert backend.is_configured

    def test_invalid_container(self) -> None:
        """Test container name validation."""
        backend = StateBackendConfig(container_name="TF--State")

        assert any("STAGEGATE_STATE_CONTAINER" in e for e in backend.validate())

    def test_resource_group_too_long(self) -> None:
        """Test resource group length limit."""
        backend = StateBackendConfig(resource_group_name="r" * 91)

        assert any("maximum length" in e for e in backend.validate())

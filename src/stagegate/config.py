"""Configuration management with validation.

Security constraints are enforced at configuration load time so the gate
runs with identity federation required by default.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Security constraints - enforced limits to prevent abuse
MAX_POLICY_FILE_SIZE_BYTES = 256 * 1024  # 256KB max policy file
MAX_RESOURCE_GROUP_NAME_LENGTH = 90

DEFAULT_STATE_CONTAINER = "tfstate"

# Input validation patterns
VALID_ENVIRONMENT_PATTERN = r"^[a-z][a-z0-9-]{0,30}[a-z0-9]$"
VALID_STORAGE_ACCOUNT_PATTERN = r"^[a-z0-9]{3,24}$"
VALID_CONTAINER_PATTERN = r"^[a-z0-9](?!.*--)[a-z0-9-]{1,61}[a-z0-9]$"
VALID_RESOURCE_GROUP_PATTERN = r"^[-\w._()]+$"


@dataclass(frozen=True)
class StateBackendConfig:
    """Remote state store settings, keyed by environment name.

    All fields are optional; backend settings are only rendered when both
    the resource group and storage account are known.
    """

    resource_group_name: str | None = None
    storage_account_name: str | None = None
    container_name: str = DEFAULT_STATE_CONTAINER

    @property
    def is_configured(self) -> bool:
        """Check if enough is known to render backend settings."""
        return bool(self.resource_group_name and self.storage_account_name)

    def validate(self) -> list[str]:
        """Validate backend fields, returning error messages."""
        errors: list[str] = []

        if self.resource_group_name:
            if len(self.resource_group_name) > MAX_RESOURCE_GROUP_NAME_LENGTH:
                errors.append(
                    f"STAGEGATE_STATE_RESOURCE_GROUP exceeds maximum length of "
                    f"{MAX_RESOURCE_GROUP_NAME_LENGTH}"
                )
            elif not re.match(VALID_RESOURCE_GROUP_PATTERN, self.resource_group_name):
                errors.append(
                    f"STAGEGATE_STATE_RESOURCE_GROUP is not a valid resource group name: "
                    f"{self.resource_group_name}"
                )

        if self.storage_account_name and not re.match(
            VALID_STORAGE_ACCOUNT_PATTERN, self.storage_account_name
        ):
            errors.append(
                f"STAGEGATE_STATE_STORAGE_ACCOUNT must be 3-24 lowercase letters or digits: "
                f"{self.storage_account_name}"
            )

        if not re.match(VALID_CONTAINER_PATTERN, self.container_name):
            errors.append(
                f"STAGEGATE_STATE_CONTAINER is not a valid blob container name: "
                f"{self.container_name}"
            )

        return errors


@dataclass(frozen=True)
class Config:
    """Gate configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-pipeline.
    """

    # Required fields
    environment: str

    # Optional policy file (branch/path filters, approval environments)
    policy_file: Path | None = None

    # SECURITY: refuse static credentials when identity federation is required
    require_oidc: bool = True

    # Remote state store
    state_backend: StateBackendConfig = field(default_factory=StateBackendConfig)

    # Runner-provided output files
    output_file: Path | None = None
    summary_file: Path | None = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization.

        SECURITY: All inputs are validated at the boundary (fail-fast).
        """
        errors: list[str] = []

        if not self.environment:
            errors.append("STAGEGATE_ENVIRONMENT is required")
        elif not re.match(VALID_ENVIRONMENT_PATTERN, self.environment):
            errors.append(
                f"STAGEGATE_ENVIRONMENT must match pattern {VALID_ENVIRONMENT_PATTERN}: "
                f"{self.environment}"
            )

        if self.policy_file is not None and not self.policy_file.is_file():
            errors.append(f"Policy file does not exist: {self.policy_file}")

        errors.extend(self.state_backend.validate())

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            STAGEGATE_ENVIRONMENT: Deployment environment name (e.g., dev, prod)
            STAGEGATE_POLICY_FILE: Path to gate policy YAML (optional)
            STAGEGATE_REQUIRE_OIDC: Reject static credentials (default: true)

        State Backend Variables:
            STAGEGATE_STATE_RESOURCE_GROUP: Resource group of the state store
            STAGEGATE_STATE_STORAGE_ACCOUNT: Storage account of the state store
            STAGEGATE_STATE_CONTAINER: Blob container (default: tfstate)

        Runner Variables:
            GITHUB_OUTPUT: File that receives step outputs
            GITHUB_STEP_SUMMARY: File that receives the markdown summary
        """

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_path(key: str) -> Path | None:
            value = os.environ.get(key, "").strip()
            return Path(value) if value else None

        return cls(
            environment=os.environ.get("STAGEGATE_ENVIRONMENT", "").strip(),
            policy_file=get_path("STAGEGATE_POLICY_FILE"),
            require_oidc=get_bool("STAGEGATE_REQUIRE_OIDC", True),
            state_backend=StateBackendConfig(
                resource_group_name=os.environ.get("STAGEGATE_STATE_RESOURCE_GROUP") or None,
                storage_account_name=os.environ.get("STAGEGATE_STATE_STORAGE_ACCOUNT") or None,
                container_name=os.environ.get(
                    "STAGEGATE_STATE_CONTAINER", DEFAULT_STATE_CONTAINER
                ),
            ),
            output_file=get_path("GITHUB_OUTPUT"),
            summary_file=get_path("GITHUB_STEP_SUMMARY"),
        )

"""Pydantic models for workflow inputs and gate policy files.

These models provide:
1. Type-safe parsing of the dispatch payload and the policy YAML
2. Validation at the boundary (malformed flags fail closed)
3. Accepting both the camelCase and snake_case spellings of input names
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, Field, ValidationInfo, field_validator

logger = logging.getLogger(__name__)

# String spellings accepted for workflow_dispatch boolean inputs.
# GitHub delivers choice/boolean inputs as strings in the event payload.
TRUE_VALUES: frozenset[str] = frozenset({"true", "1", "yes", "on"})
FALSE_VALUES: frozenset[str] = frozenset({"false", "0", "no", "off", ""})

STAGE_NAMES: tuple[str, ...] = ("init", "plan", "apply", "destroy")

# GitHub environment names: letters, digits, dash, underscore, dot, space
VALID_ENVIRONMENT_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9 ._-]{0,254}$"
VALID_CONCURRENCY_PREFIX_PATTERN = r"^[a-z][a-z0-9-]{0,62}$"


def coerce_flag(value: Any, name: str = "flag") -> bool:
    """Coerce a dispatch input value to a boolean.

    Anything that is not recognisably true evaluates to False.

    Args:
        value: Raw value from the dispatch payload.
        name: Input name, used for logging only.

    Returns:
        The boolean value of the flag.
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in TRUE_VALUES:
            return True
        if normalized not in FALSE_VALUES:
            logger.warning(
                "Malformed dispatch input treated as false",
                extra={"input": name, "value": value[:64]},
            )
        return False
    if isinstance(value, int):
        return value == 1

    logger.warning(
        "Unsupported dispatch input type treated as false",
        extra={"input": name, "value_type": type(value).__name__},
    )
    return False


# =============================================================================
# Stage Flags
# =============================================================================


class StageFlags(BaseModel):
    """Manually supplied per-stage flags from a workflow_dispatch run.

    Each stage has a run flag (``doInit``) and an approval gate flag
    (``useEnvironmentInit``). The flags are ignored for any trigger other
    than manual dispatch.
    """

    model_config = {"extra": "ignore", "frozen": True, "populate_by_name": True}

    do_init: bool = Field(False, alias="doInit")
    use_environment_init: bool = Field(False, alias="useEnvironmentInit")
    do_plan: bool = Field(False, alias="doPlan")
    use_environment_plan: bool = Field(False, alias="useEnvironmentPlan")
    do_apply: bool = Field(False, alias="doApply")
    use_environment_apply: bool = Field(False, alias="useEnvironmentApply")
    do_destroy: bool = Field(False, alias="doDestroy")
    use_environment_destroy: bool = Field(False, alias="useEnvironmentDestroy")

    @field_validator("*", mode="before")
    @classmethod
    def fail_closed(cls, v: Any, info: ValidationInfo) -> bool:
        return coerce_flag(v, info.field_name)

    @classmethod
    def from_inputs(cls, inputs: dict[str, Any] | None) -> StageFlags:
        """Build flags from a workflow_dispatch ``inputs`` mapping."""
        if not inputs:
            return cls()
        return cls.model_validate(inputs)

    def any_set(self) -> bool:
        """Check whether any flag is set."""
        return any(self.model_dump().values())


# =============================================================================
# Gate Policy
# =============================================================================


class GatePolicySpec(BaseModel):
    """Gate policy loaded from the optional policy YAML file.

    Example:
        branches: ["main"]
        paths: ["terraform/**", ".github/workflows/terraform.yml"]
        approvalEnvironments:
          apply: prod-approvers
        concurrencyPrefix: terraform
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    branches: list[str] = Field(default_factory=lambda: ["main"])
    paths: list[str] = Field(default_factory=list)
    approval_environments: dict[str, str] = Field(
        default_factory=dict, alias="approvalEnvironments"
    )
    concurrency_prefix: str = Field("terraform", alias="concurrencyPrefix")

    @field_validator("branches", "paths")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        cleaned = [pattern.strip() for pattern in v]
        if any(not pattern for pattern in cleaned):
            raise ValueError("patterns must not be empty")
        return cleaned

    @field_validator("approval_environments")
    @classmethod
    def validate_approval_environments(cls, v: dict[str, str]) -> dict[str, str]:
        for stage, environment in v.items():
            if stage not in STAGE_NAMES:
                raise ValueError(f"unknown stage '{stage}', must be one of {STAGE_NAMES}")
            if not re.match(VALID_ENVIRONMENT_NAME_PATTERN, environment):
                raise ValueError(f"invalid environment name for {stage}: {environment!r}")
        return v

    @field_validator("concurrency_prefix")
    @classmethod
    def validate_concurrency_prefix(cls, v: str) -> str:
        if not re.match(VALID_CONCURRENCY_PREFIX_PATTERN, v):
            raise ValueError(f"concurrencyPrefix must match {VALID_CONCURRENCY_PREFIX_PATTERN}")
        return v

    def approval_environment_for(self, stage: str, default: str) -> str:
        """Get the approval environment name for a stage."""
        return self.approval_environments.get(stage, default)

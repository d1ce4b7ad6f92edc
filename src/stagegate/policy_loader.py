"""Gate policy file loading with validation.

SECURITY: File reads enforce a size limit and input validation is
performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_POLICY_FILE_SIZE_BYTES
from .models import GatePolicySpec
from .trigger import TriggerFilter

logger = logging.getLogger(__name__)


class PolicyLoadError(Exception):
    """Raised when policy loading or validation fails."""

    pass


def load_policy(policy_path: Path | None) -> GatePolicySpec:
    """Load and validate a gate policy from YAML.

    Args:
        policy_path: Path to the policy file, or None for the default policy.

    Returns:
        Validated policy.

    Raises:
        PolicyLoadError: If the policy cannot be loaded or fails validation.
    """
    if policy_path is None:
        return GatePolicySpec()

    if not policy_path.is_file():
        raise PolicyLoadError(f"Policy file not found: {policy_path}")

    # SECURITY: Check file size before reading
    try:
        file_size = policy_path.stat().st_size
    except OSError as e:
        raise PolicyLoadError(f"Failed to stat policy file {policy_path}: {e}") from e

    if file_size > MAX_POLICY_FILE_SIZE_BYTES:
        raise PolicyLoadError(
            f"Policy file exceeds maximum size of {MAX_POLICY_FILE_SIZE_BYTES} bytes: "
            f"{policy_path}"
        )

    try:
        content = policy_path.read_text(encoding="utf-8")
    except OSError as e:
        raise PolicyLoadError(f"Failed to read policy file {policy_path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise PolicyLoadError(f"Invalid YAML in {policy_path}: {e}") from e

    # An empty file means defaults
    if raw_data is None:
        raw_data = {}

    if not isinstance(raw_data, dict):
        raise PolicyLoadError(f"Policy file must contain a YAML mapping: {policy_path}")

    # Support both flat format and Kubernetes-style wrapper
    if "apiVersion" in raw_data and "spec" in raw_data:
        policy_data = raw_data.get("spec") or {}
        if not isinstance(policy_data, dict):
            raise PolicyLoadError(f"Spec section must be a mapping: {policy_path}")
    else:
        policy_data = raw_data

    try:
        policy = GatePolicySpec.model_validate(policy_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise PolicyLoadError(f"Validation failed for {policy_path}:\n{error_list}") from e

    logger.info("Loaded gate policy from %s", policy_path)
    return policy


def trigger_filter_for(policy: GatePolicySpec) -> TriggerFilter:
    """Build the trigger filter described by a policy."""
    return TriggerFilter(branches=tuple(policy.branches), paths=tuple(policy.paths))

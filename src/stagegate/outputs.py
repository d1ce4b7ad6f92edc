"""Publishing gate decisions to the workflow.

Downstream jobs read the step outputs in their ``if:`` and ``environment:``
keys, e.g.::

    apply:
      needs: gate
      if: needs.gate.outputs.apply_run == 'true'
      environment: ${{ needs.gate.outputs.apply_environment }}

An empty environment name means the job runs without an approval gate.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from .config import StateBackendConfig
from .gate import GatePlan, Stage
from .models import GatePolicySpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageOutput:
    """What one stage job needs to know."""

    stage: Stage
    run: bool
    approval_required: bool
    environment: str


def stage_outputs(plan: GatePlan, policy: GatePolicySpec, environment: str) -> list[StageOutput]:
    """Resolve approval environment names for each stage.

    Args:
        plan: Evaluated gate plan.
        policy: Gate policy (per-stage approval environment overrides).
        environment: Deployment environment name, the default approval gate.

    Returns:
        One entry per stage, in lifecycle order.
    """
    outputs = []
    for decision in plan.decisions:
        gate_environment = ""
        if decision.run and decision.approval_required:
            gate_environment = policy.approval_environment_for(decision.stage.value, environment)
        outputs.append(
            StageOutput(
                stage=decision.stage,
                run=decision.run,
                approval_required=decision.approval_required,
                environment=gate_environment,
            )
        )
    return outputs


def concurrency_group(policy: GatePolicySpec, environment: str) -> str:
    """Concurrency group serializing pipeline runs per environment."""
    return f"{policy.concurrency_prefix}-{environment}"


def _bool(value: bool) -> str:
    return "true" if value else "false"


def render_github_outputs(
    plan: GatePlan,
    policy: GatePolicySpec,
    environment: str,
    backend: StateBackendConfig | None = None,
) -> dict[str, str]:
    """Render step outputs as a name/value mapping.

    When a state backend is configured, ``backend_config`` carries the
    ``-backend-config`` arguments for ``terraform init``, one per line.
    """
    outputs: dict[str, str] = {
        "context": plan.context.value,
        "environment": environment,
        "concurrency_group": concurrency_group(policy, environment),
        "skipped": _bool(plan.skipped_reason is not None),
    }
    for entry in stage_outputs(plan, policy, environment):
        name = entry.stage.value
        outputs[f"{name}_run"] = _bool(entry.run)
        outputs[f"{name}_approval"] = _bool(entry.approval_required)
        outputs[f"{name}_environment"] = entry.environment

    if backend is not None and backend.is_configured:
        outputs["backend_config"] = "\n".join(
            backend_config_args(backend_settings(backend, environment))
        )

    outputs["plan"] = json.dumps(plan.to_dict(), separators=(",", ":"), sort_keys=True)
    return outputs


def write_github_outputs(path: Path, outputs: dict[str, str]) -> None:
    """Append outputs to the runner's GITHUB_OUTPUT file.

    Values containing newlines use the heredoc form with a random delimiter.
    """
    lines: list[str] = []
    for name, value in outputs.items():
        if "\n" in value:
            delimiter = f"ghadelimiter_{uuid.uuid4()}"
            lines.append(f"{name}<<{delimiter}")
            lines.append(value)
            lines.append(delimiter)
        else:
            lines.append(f"{name}={value}")

    with path.open("a", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")

    logger.info("Wrote step outputs", extra={"output_file": str(path), "count": len(outputs)})


def render_summary(
    plan: GatePlan,
    policy: GatePolicySpec,
    environment: str,
    backend: StateBackendConfig | None = None,
    missing_federation: tuple[str, ...] = (),
) -> str:
    """Render the markdown step summary."""
    lines = [
        f"### Stage gates: `{environment}` ({plan.context.value})",
        "",
    ]
    if plan.skipped_reason:
        lines.extend([f"> Skipped: {plan.skipped_reason}", ""])

    lines.extend(["| Stage | Runs | Approval | Environment |", "|---|---|---|---|"])
    for entry in stage_outputs(plan, policy, environment):
        lines.append(
            f"| {entry.stage.value} "
            f"| {'yes' if entry.run else 'no'} "
            f"| {'required' if entry.approval_required else '-'} "
            f"| {entry.environment or '-'} |"
        )

    if backend is not None and backend.is_configured:
        settings = backend_settings(backend, environment)
        lines.extend(
            [
                "",
                f"State: `{settings['storage_account_name']}/{settings['container_name']}/"
                f"{settings['key']}` (resource group `{settings['resource_group_name']}`)",
            ]
        )

    if missing_federation:
        lines.extend(["", f"> Federated login variables missing: {', '.join(missing_federation)}"])
    return "\n".join(lines) + "\n"


def write_summary(path: Path, summary: str) -> None:
    """Append the markdown summary to GITHUB_STEP_SUMMARY."""
    with path.open("a", encoding="utf-8") as f:
        f.write(summary)


# =============================================================================
# State Backend
# =============================================================================


def backend_settings(backend: StateBackendConfig, environment: str) -> dict[str, str]:
    """Remote state settings for ``terraform init``, keyed by environment.

    Raises:
        ValueError: If the backend is not configured.
    """
    if not backend.is_configured:
        raise ValueError("State backend requires a resource group and storage account")

    return {
        "resource_group_name": str(backend.resource_group_name),
        "storage_account_name": str(backend.storage_account_name),
        "container_name": backend.container_name,
        "key": f"{environment}.tfstate",
        "use_oidc": "true",
    }


def backend_config_args(settings: dict[str, str]) -> list[str]:
    """Render settings as ``-backend-config=key=value`` arguments."""
    return [f"-backend-config={key}={value}" for key, value in settings.items()]

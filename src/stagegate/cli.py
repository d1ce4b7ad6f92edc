"""Stage gate CLI (stagegate).

Evaluate, tabulate and verify pipeline stage gates from a terminal.

Usage:
    stagegate evaluate --event push             # Gate plan for a push
    stagegate evaluate --event workflow_dispatch --do-apply --use-environment-apply
    stagegate table                             # Gate table for all contexts
    stagegate verify                            # Exhaustive safety check
    stagegate backend-config -e prod -g rg-tfstate -a sttfstateprod
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from .config import DEFAULT_STATE_CONTAINER, VALID_ENVIRONMENT_PATTERN, StateBackendConfig
from .gate import (
    GATE_TABLE,
    GatePlan,
    StageGateEvaluator,
    TriggerContext,
    all_flag_combinations,
    check_gate_table,
)
from .models import StageFlags
from .outputs import backend_config_args, backend_settings, stage_outputs
from .policy_loader import PolicyLoadError, load_policy

EVENT_CHOICES = [context.value for context in TriggerContext]
FLAG_NAMES = tuple(StageFlags.model_fields)


def format_plan(plan: GatePlan) -> str:
    """Render a plan as an aligned text table."""
    lines = [f"context: {plan.context.value}"]
    if plan.skipped_reason:
        lines.append(f"skipped: {plan.skipped_reason}")
    for decision in plan.decisions:
        approval = "approval" if decision.approval_required else "-"
        run = "run" if decision.run else "skip"
        lines.append(f"  {decision.stage.value:<8} {run:<5} {approval}")
    return "\n".join(lines)


def flag_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Add one boolean option per stage flag."""
    for name in reversed(FLAG_NAMES):
        option = "--" + name.replace("_", "-")
        func = click.option(option, name, is_flag=True, default=False)(func)
    return func


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="stagegate")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Stage gate CLI (stagegate).

    Decides which Terraform stages run and which wait on approval.

    \b
    Quick Start:
        stagegate table     # Show the gate table
        stagegate verify    # Check the destroy safety invariant
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option(
    "--event",
    "-e",
    "event",
    type=click.Choice(EVENT_CHOICES),
    required=True,
    help="Triggering event",
)
@flag_options
@click.option(
    "--policy",
    "policy_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Gate policy YAML (for approval environment names)",
)
@click.option("--environment", default="dev", show_default=True, help="Deployment environment")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
)
def evaluate(
    event: str,
    policy_path: str | None,
    environment: str,
    output_format: str,
    **flag_values: bool,
) -> None:
    """Evaluate stage gates for one trigger.

    Flags only take effect for workflow_dispatch.

    \b
    Examples:
        stagegate evaluate --event pull_request
        stagegate evaluate --event workflow_dispatch --do-destroy --format json
    """
    context = TriggerContext(event)
    flags = StageFlags(**flag_values)

    if context is not TriggerContext.MANUAL_DISPATCH and flags.any_set():
        click.secho(f"Note: flags are ignored for {event}", fg="yellow", err=True)

    try:
        policy = load_policy(Path(policy_path) if policy_path else None)
    except PolicyLoadError as e:
        raise click.ClickException(str(e)) from e

    plan = StageGateEvaluator().evaluate_all(context, flags)

    if output_format == "json":
        data = plan.to_dict()
        for entry in stage_outputs(plan, policy, environment):
            data["stages"][entry.stage.value]["environment"] = entry.environment
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(format_plan(plan))


@cli.command()
def table() -> None:
    """Show the gate table for every trigger context."""
    evaluator = StageGateEvaluator()

    click.echo("Rules:")
    for stage, rule in GATE_TABLE.items():
        click.echo(f"  {stage.value:<8} {rule.description}")

    for label, flags in (
        ("no flags", StageFlags()),
        ("all flags", StageFlags(**dict.fromkeys(FLAG_NAMES, True))),
    ):
        click.echo(f"\nWith {label}:")
        for context in TriggerContext:
            click.echo(format_plan(evaluator.evaluate_all(context, flags)))


@cli.command()
def verify() -> None:
    """Exhaustively check the gate table against its safety invariants."""
    combinations = len(all_flag_combinations()) * len(TriggerContext)
    violations = check_gate_table()

    if violations:
        for violation in sorted(set(violations)):
            click.secho(f"✗ {violation}", fg="red", err=True)
        raise click.ClickException(f"{len(violations)} violations found")

    click.secho(f"✓ {combinations} combinations checked, no violations", fg="green")


@cli.command("backend-config")
@click.option("--environment", "-e", required=True, help="Deployment environment")
@click.option(
    "--resource-group",
    "-g",
    envvar="STAGEGATE_STATE_RESOURCE_GROUP",
    required=True,
    help="State store resource group",
)
@click.option(
    "--storage-account",
    "-a",
    envvar="STAGEGATE_STATE_STORAGE_ACCOUNT",
    required=True,
    help="State store storage account",
)
@click.option(
    "--container",
    "-c",
    envvar="STAGEGATE_STATE_CONTAINER",
    default=DEFAULT_STATE_CONTAINER,
    show_default=True,
)
def backend_config(
    environment: str,
    resource_group: str,
    storage_account: str,
    container: str,
) -> None:
    """Print -backend-config arguments for terraform init."""
    if not re.match(VALID_ENVIRONMENT_PATTERN, environment):
        raise click.ClickException(
            f"environment must match pattern {VALID_ENVIRONMENT_PATTERN}: {environment}"
        )

    backend = StateBackendConfig(
        resource_group_name=resource_group,
        storage_account_name=storage_account,
        container_name=container,
    )
    errors = backend.validate()
    if errors:
        raise click.ClickException("; ".join(errors))

    for arg in backend_config_args(backend_settings(backend, environment)):
        click.echo(arg)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()

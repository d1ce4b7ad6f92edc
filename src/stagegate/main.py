"""GitHub Actions entry point for the stage gate.

Runs as the first job of the Terraform workflow. Reads the trigger from the
runner environment, evaluates the gate table and publishes the decisions as
step outputs for the init, plan, apply and destroy jobs.

Exit codes:
    0: Gate plan published
    1: Configuration, policy or trigger error (no stage runs)
    2: Security violation (static credentials present)
    3: Destroy safety invariant violated
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from .config import Config, ConfigurationError
from .gate import GateInvariantError, GatePlan, StageGateEvaluator, verify_destroy_invariant
from .models import GatePolicySpec
from .outputs import render_github_outputs, render_summary, write_github_outputs, write_summary
from .policy_loader import PolicyLoadError, load_policy, trigger_filter_for
from .security import (
    FederationStatus,
    SecretlessViolationError,
    check_federation,
    enforce_secretless,
)
from .trigger import TriggerEvent, TriggerResolutionError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_SECURITY_VIOLATION = 2
EXIT_INVARIANT_VIOLATION = 3

# LogRecord attributes that are not user-supplied extras
RESERVED_LOG_ATTRS: frozenset[str] = frozenset({
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "exc_info",
    "exc_text",
    "thread",
    "threadName",
    "taskName",
    "message",
})


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging on stdout.

    Safe to call more than once; the JSON handler is only installed once.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if any(isinstance(h.formatter, JsonFormatter) for h in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)


@dataclass(frozen=True)
class GateRun:
    """Result of one gate evaluation in the pipeline."""

    plan: GatePlan
    policy: GatePolicySpec
    event: TriggerEvent
    federation: FederationStatus | None = None


def evaluate_trigger(
    config: Config,
    environ: Mapping[str, str] | None = None,
    evaluator: StageGateEvaluator | None = None,
) -> GateRun:
    """Resolve the trigger and evaluate the gate plan.

    Raises:
        SecretlessViolationError: If OIDC is required and secrets are present.
        PolicyLoadError: If the policy file is invalid.
        TriggerResolutionError: If the event is unsupported or unreadable.
        GateInvariantError: If the plan would destroy outside manual dispatch.
    """
    evaluator = evaluator or StageGateEvaluator()

    federation = None
    if config.require_oidc:
        enforce_secretless(environ)
        federation = check_federation(environ)

    policy = load_policy(config.policy_file)
    event = TriggerEvent.from_github_env(environ)

    reason = trigger_filter_for(policy).rejection_reason(event)
    if reason:
        logger.info("Trigger filtered out, no stage runs", extra={"reason": reason})
        plan = evaluator.skipped(event.context, reason)
    else:
        flags = event.flags
        plan = evaluator.evaluate_all(event.context, flags)
        verify_destroy_invariant(plan, flags)

    return GateRun(plan=plan, policy=policy, event=event, federation=federation)


def main() -> int:
    """Evaluate and publish stage gates.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return EXIT_ERROR

    try:
        result = evaluate_trigger(config, os.environ)
    except SecretlessViolationError as e:
        logger.critical(
            "Security violation: static credentials detected in environment",
            extra={"error": str(e)},
        )
        return EXIT_SECURITY_VIOLATION
    except GateInvariantError as e:
        logger.critical("Gate invariant violated", extra={"error": str(e)})
        return EXIT_INVARIANT_VIOLATION
    except (PolicyLoadError, TriggerResolutionError) as e:
        logger.error("Cannot evaluate stage gates", extra={"error": str(e)})
        return EXIT_ERROR

    outputs = render_github_outputs(
        result.plan, result.policy, config.environment, config.state_backend
    )
    missing_federation = result.federation.missing if result.federation is not None else ()

    try:
        if config.output_file is not None:
            write_github_outputs(config.output_file, outputs)
        else:
            logger.warning(
                "GITHUB_OUTPUT not set, step outputs not published",
                extra={"outputs": outputs},
            )

        if config.summary_file is not None:
            write_summary(
                config.summary_file,
                render_summary(
                    result.plan,
                    result.policy,
                    config.environment,
                    config.state_backend,
                    missing_federation,
                ),
            )
    except OSError as e:
        logger.error("Failed to publish gate outputs", extra={"error": str(e)})
        return EXIT_ERROR

    logger.info(
        "Stage gates evaluated",
        extra={
            "environment": config.environment,
            "context": result.plan.context.value,
            "stages_to_run": [s.value for s in result.plan.stages_to_run],
            "gated_stages": [s.value for s in result.plan.gated_stages],
            "skipped_reason": result.plan.skipped_reason,
            "backend_configured": config.state_backend.is_configured,
            "federation_missing": list(missing_federation),
        },
    )
    return EXIT_OK


def run() -> None:
    """Entry point for the stagegate-action console script."""
    sys.exit(main())


if __name__ == "__main__":
    run()

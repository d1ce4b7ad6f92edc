"""Stage gate evaluation for the Terraform provisioning pipeline.

Decides, per provisioning stage, whether the stage job runs and whether it
must wait on an environment approval gate before proceeding.

DESIGN PHILOSOPHY:
- The gate table is data: one rule per stage, nothing hidden in callers
- Flags only count for manual dispatch; every other trigger ignores them
- Anything not explicitly allowed does not run (fail closed)
- Destroy is unreachable from pull requests and pushes

SAFETY INVARIANT:
    destroy.run => context is MANUAL_DISPATCH and flags.do_destroy

The invariant is checked independently of the table by
verify_destroy_invariant() and exhaustively by check_gate_table().
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .models import StageFlags

logger = logging.getLogger(__name__)


class TriggerContext(str, Enum):
    """What started the pipeline run.

    PULL_REQUEST: Validation run for a proposed change (plan only)
    PUSH: Change merged to a tracked branch (init, plan, gated apply)
    MANUAL_DISPATCH: Operator-driven run, stages chosen by flags
    """

    PULL_REQUEST = "pull_request"
    PUSH = "push"
    MANUAL_DISPATCH = "workflow_dispatch"


class Stage(str, Enum):
    """Provisioning lifecycle stages, in execution order."""

    INIT = "init"
    PLAN = "plan"
    APPLY = "apply"
    DESTROY = "destroy"


class GateInvariantError(Exception):
    """Raised when a gate plan violates the destroy safety invariant."""

    pass


# =============================================================================
# Gate Table
# =============================================================================

GatePredicate = Callable[[TriggerContext, StageFlags], bool]


@dataclass(frozen=True)
class GateRule:
    """Run and approval predicates for one stage."""

    run: GatePredicate
    approval: GatePredicate
    description: str = ""


PR = TriggerContext.PULL_REQUEST
PUSH = TriggerContext.PUSH
DISPATCH = TriggerContext.MANUAL_DISPATCH

GATE_TABLE: dict[Stage, GateRule] = {
    Stage.INIT: GateRule(
        run=lambda ctx, f: ctx is not PR and (ctx is PUSH or f.do_init),
        approval=lambda ctx, f: ctx is DISPATCH and f.use_environment_init,
        description="push, or dispatch with doInit; never on pull requests",
    ),
    Stage.PLAN: GateRule(
        run=lambda ctx, f: ctx is PR or ctx is PUSH or f.do_plan,
        approval=lambda ctx, f: ctx is DISPATCH and f.use_environment_plan,
        description="pull request, push, or dispatch with doPlan",
    ),
    Stage.APPLY: GateRule(
        run=lambda ctx, f: ctx is PUSH or f.do_apply,
        approval=lambda ctx, f: ctx is PUSH or (ctx is DISPATCH and f.use_environment_apply),
        description="push (always gated), or dispatch with doApply",
    ),
    Stage.DESTROY: GateRule(
        run=lambda ctx, f: ctx is DISPATCH and f.do_destroy,
        approval=lambda ctx, f: ctx is DISPATCH and f.use_environment_destroy,
        description="dispatch with doDestroy only",
    ),
}


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class GateDecision:
    """Gate decision for a single stage."""

    stage: Stage
    run: bool
    approval_required: bool

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/output."""
        return {
            "stage": self.stage.value,
            "run": self.run,
            "approval_required": self.approval_required,
        }


@dataclass(frozen=True)
class GatePlan:
    """Gate decisions for every stage of one pipeline run."""

    context: TriggerContext
    decisions: tuple[GateDecision, ...] = field(default_factory=tuple)
    skipped_reason: str | None = None

    def __getitem__(self, stage: Stage) -> GateDecision:
        for decision in self.decisions:
            if decision.stage == stage:
                return decision
        raise KeyError(stage)

    @property
    def stages_to_run(self) -> tuple[Stage, ...]:
        """Stages whose jobs will be scheduled."""
        return tuple(d.stage for d in self.decisions if d.run)

    @property
    def gated_stages(self) -> tuple[Stage, ...]:
        """Running stages that pause for approval."""
        return tuple(d.stage for d in self.decisions if d.run and d.approval_required)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/output."""
        return {
            "context": self.context.value,
            "skipped_reason": self.skipped_reason,
            "stages": {d.stage.value: d.to_dict() for d in self.decisions},
        }


# =============================================================================
# Evaluator
# =============================================================================


class StageGateEvaluator:
    """Evaluates the gate table for a trigger context and stage flags.

    The evaluator is pure: no I/O, no state between calls.
    """

    def __init__(self, table: dict[Stage, GateRule] | None = None) -> None:
        self._table = table if table is not None else GATE_TABLE

    @staticmethod
    def effective_flags(context: TriggerContext, flags: StageFlags | None) -> StageFlags:
        """Get the flags that actually apply to a trigger context.

        Flags are only honoured for manual dispatch.
        """
        if context is TriggerContext.MANUAL_DISPATCH and flags is not None:
            return flags
        return StageFlags()

    def evaluate(
        self,
        stage: Stage,
        context: TriggerContext,
        flags: StageFlags | None = None,
    ) -> GateDecision:
        """Evaluate the gate for a single stage.

        Args:
            stage: Stage to evaluate.
            context: What triggered the pipeline.
            flags: Dispatch flags (ignored unless context is manual dispatch).

        Returns:
            Gate decision. A stage missing from the table does not run.
        """
        rule = self._table.get(stage)
        if rule is None:
            return GateDecision(stage=stage, run=False, approval_required=False)

        effective = self.effective_flags(context, flags)
        return GateDecision(
            stage=stage,
            run=bool(rule.run(context, effective)),
            approval_required=bool(rule.approval(context, effective)),
        )

    def evaluate_all(
        self,
        context: TriggerContext,
        flags: StageFlags | None = None,
    ) -> GatePlan:
        """Evaluate every stage in lifecycle order."""
        plan = GatePlan(
            context=context,
            decisions=tuple(self.evaluate(stage, context, flags) for stage in Stage),
        )
        logger.debug("Evaluated gate plan", extra={"plan": plan.to_dict()})
        return plan

    @staticmethod
    def skipped(context: TriggerContext, reason: str) -> GatePlan:
        """Build the plan for a trigger that was filtered out: nothing runs."""
        return GatePlan(
            context=context,
            decisions=tuple(
                GateDecision(stage=stage, run=False, approval_required=False)
                for stage in Stage
            ),
            skipped_reason=reason,
        )


def verify_destroy_invariant(plan: GatePlan, flags: StageFlags | None) -> None:
    """Check that destroy only runs for an explicit manual dispatch.

    Args:
        plan: Evaluated gate plan.
        flags: The raw flags the plan was evaluated with.

    Raises:
        GateInvariantError: If destroy would run outside manual dispatch
            or without doDestroy.
    """
    destroy = plan[Stage.DESTROY]
    if not destroy.run:
        return

    allowed = (
        plan.context is TriggerContext.MANUAL_DISPATCH
        and flags is not None
        and flags.do_destroy
    )
    if not allowed:
        logger.critical(
            "Destroy gate opened outside manual dispatch",
            extra={"context": plan.context.value, "security_event": "destroy_invariant"},
        )
        raise GateInvariantError(
            f"destroy must not run for context '{plan.context.value}' "
            f"without an explicit doDestroy dispatch"
        )


def all_flag_combinations() -> list[StageFlags]:
    """Every possible combination of the eight stage flags."""
    names = list(StageFlags.model_fields)
    return [
        StageFlags(**dict(zip(names, values, strict=True)))
        for values in itertools.product((False, True), repeat=len(names))
    ]


def check_gate_table(evaluator: StageGateEvaluator | None = None) -> list[str]:
    """Exhaustively evaluate the gate table and collect invariant violations.

    Covers every trigger context against every flag combination.

    Returns:
        Human-readable violations, empty when the table is safe.
    """
    evaluator = evaluator or StageGateEvaluator()
    violations: list[str] = []

    for context in TriggerContext:
        for flags in all_flag_combinations():
            plan = evaluator.evaluate_all(context, flags)
            try:
                verify_destroy_invariant(plan, flags)
            except GateInvariantError as e:
                violations.append(str(e))

            if context is TriggerContext.PULL_REQUEST:
                for stage in (Stage.APPLY, Stage.DESTROY):
                    if plan[stage].run:
                        violations.append(f"{stage.value} runs on pull_request")

            if context is TriggerContext.PUSH and not plan[Stage.APPLY].approval_required:
                violations.append("apply on push is not approval gated")

            if context is TriggerContext.MANUAL_DISPATCH and not flags.any_set():
                if plan.stages_to_run:
                    violations.append(
                        f"dispatch without flags runs {[s.value for s in plan.stages_to_run]}"
                    )

    return violations

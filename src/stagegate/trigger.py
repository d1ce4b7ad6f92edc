"""Trigger resolution from the GitHub Actions runner environment.

Maps the workflow event to a TriggerContext and re-applies the workflow's
branch and path filters, so a gate plan is only opened for events the
pipeline is meant to act on.

Runner variables read:
    GITHUB_EVENT_NAME: pull_request, push, workflow_dispatch, ...
    GITHUB_REF: refs/heads/<branch> for push and dispatch
    GITHUB_BASE_REF: target branch for pull requests
    GITHUB_EVENT_PATH: JSON payload (dispatch inputs, pushed commits)
    STAGEGATE_CHANGED_PATHS: optional comma-separated changed paths
"""

from __future__ import annotations

import functools
import json
import logging
import os
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .gate import TriggerContext
from .models import StageFlags

logger = logging.getLogger(__name__)

# Event payloads are small; anything bigger is not a real runner payload
MAX_EVENT_PAYLOAD_BYTES = 5 * 1024 * 1024

EVENT_CONTEXTS: dict[str, TriggerContext] = {
    "pull_request": TriggerContext.PULL_REQUEST,
    "pull_request_target": TriggerContext.PULL_REQUEST,
    "push": TriggerContext.PUSH,
    "workflow_dispatch": TriggerContext.MANUAL_DISPATCH,
}

BRANCH_REF_PREFIX = "refs/heads/"


class TriggerResolutionError(Exception):
    """Raised when the triggering event cannot be resolved."""

    pass


def resolve_context(event_name: str) -> TriggerContext:
    """Map a GitHub event name to a trigger context.

    Raises:
        TriggerResolutionError: If the event is not one the pipeline handles.
    """
    context = EVENT_CONTEXTS.get(event_name.strip().lower())
    if context is None:
        raise TriggerResolutionError(
            f"Unsupported event '{event_name}'. Supported events: {sorted(EVENT_CONTEXTS)}"
        )
    return context


def branch_from_ref(ref: str) -> str | None:
    """Extract the branch name from a git ref, or None for tags and others."""
    if ref.startswith(BRANCH_REF_PREFIX):
        return ref[len(BRANCH_REF_PREFIX) :]
    return None


def changed_paths_from_payload(payload: Mapping[str, Any]) -> tuple[str, ...] | None:
    """Collect the paths touched by a push payload.

    Returns:
        Sorted unique paths, or None when the payload carries no commit
        file lists (pull_request payloads never do).
    """
    commits = payload.get("commits")
    if not isinstance(commits, list) or not commits:
        return None

    paths: set[str] = set()
    found = False
    for commit in commits:
        if not isinstance(commit, dict):
            continue
        for key in ("added", "modified", "removed"):
            files = commit.get(key)
            if isinstance(files, list):
                found = True
                paths.update(str(f) for f in files)

    return tuple(sorted(paths)) if found else None


def load_event_payload(path: Path) -> dict[str, Any]:
    """Read the runner's event payload JSON.

    Raises:
        TriggerResolutionError: If the payload is missing, oversized or invalid.
    """
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise TriggerResolutionError(f"Failed to stat event payload {path}: {e}") from e

    if file_size > MAX_EVENT_PAYLOAD_BYTES:
        raise TriggerResolutionError(
            f"Event payload exceeds maximum size of {MAX_EVENT_PAYLOAD_BYTES} bytes: {path}"
        )

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise TriggerResolutionError(f"Failed to read event payload {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise TriggerResolutionError(f"Invalid JSON in event payload {path}: {e}") from e

    if not isinstance(payload, dict):
        raise TriggerResolutionError(f"Event payload must be a JSON object: {path}")

    return payload


@functools.lru_cache(maxsize=256)
def filter_pattern_regex(pattern: str) -> re.Pattern[str]:
    """Compile a workflow branch or path filter pattern.

    Follows the GitHub Actions filter syntax:
        *       any characters except ``/``
        **      any characters, including ``/``
        ?       zero or one of the preceding character
        +       one or more of the preceding character
        [...]   one character from the set or range
        \\      escapes the next character
    """
    parts: list[str] = []
    quantifiable = False
    i = 0
    while i < len(pattern):
        char = pattern[i]
        step = 1
        if char == "*":
            if pattern.startswith("**", i):
                parts.append(".*")
                step = 2
            else:
                parts.append("[^/]*")
            quantifiable = False
        elif char in "?+" and quantifiable:
            parts.append(char)
            quantifiable = False
        elif char == "[" and pattern.find("]", i + 2) != -1:
            end = pattern.find("]", i + 2)
            parts.append("[" + pattern[i + 1 : end].replace("\\", "\\\\") + "]")
            step = end + 1 - i
            quantifiable = True
        elif char == "\\" and i + 1 < len(pattern):
            parts.append(re.escape(pattern[i + 1]))
            step = 2
            quantifiable = True
        else:
            parts.append(re.escape(char))
            quantifiable = True
        i += step

    return re.compile("".join(parts))


def matches_filter(value: str, patterns: Sequence[str]) -> bool:
    """Evaluate an ordered include/exclude pattern list against a value.

    Patterns apply in order. A ``!`` pattern excludes a value matched by an
    earlier pattern, and a later positive pattern can include it again.
    """
    matched = False
    for pattern in patterns:
        if pattern.startswith("!"):
            if matched and filter_pattern_regex(pattern[1:]).fullmatch(value):
                matched = False
        elif not matched and filter_pattern_regex(pattern).fullmatch(value):
            matched = True
    return matched


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class TriggerEvent:
    """The event that started a pipeline run."""

    context: TriggerContext
    event_name: str
    branch: str | None = None
    changed_paths: tuple[str, ...] | None = None
    inputs: dict[str, Any] = field(default_factory=dict)

    @property
    def flags(self) -> StageFlags:
        """Stage flags from dispatch inputs; defaults for any other event."""
        if self.context is not TriggerContext.MANUAL_DISPATCH:
            return StageFlags()
        return StageFlags.from_inputs(self.inputs)

    @classmethod
    def from_github_env(cls, environ: Mapping[str, str] | None = None) -> TriggerEvent:
        """Build the event from GitHub Actions runner variables.

        Args:
            environ: Environment mapping (defaults to os.environ).

        Raises:
            TriggerResolutionError: If the event is missing or unsupported.
        """
        env = os.environ if environ is None else environ

        event_name = env.get("GITHUB_EVENT_NAME", "")
        if not event_name:
            raise TriggerResolutionError("GITHUB_EVENT_NAME is not set")
        context = resolve_context(event_name)

        payload: dict[str, Any] = {}
        event_path = env.get("GITHUB_EVENT_PATH")
        if event_path:
            payload = load_event_payload(Path(event_path))
        elif context is TriggerContext.MANUAL_DISPATCH:
            logger.warning("No event payload for workflow_dispatch, using default flags")

        if context is TriggerContext.PULL_REQUEST:
            branch = env.get("GITHUB_BASE_REF") or None
        else:
            branch = branch_from_ref(env.get("GITHUB_REF", ""))

        override = env.get("STAGEGATE_CHANGED_PATHS", "")
        if override:
            changed_paths: tuple[str, ...] | None = tuple(
                sorted({p.strip() for p in override.split(",") if p.strip()})
            )
        else:
            changed_paths = changed_paths_from_payload(payload)

        inputs = payload.get("inputs") or {}
        if not isinstance(inputs, dict):
            logger.warning("Ignoring non-object dispatch inputs")
            inputs = {}

        event = cls(
            context=context,
            event_name=event_name,
            branch=branch,
            changed_paths=changed_paths,
            inputs=inputs,
        )
        logger.info(
            "Resolved trigger",
            extra={
                "event_name": event_name,
                "context": context.value,
                "branch": branch,
                "changed_path_count": len(changed_paths) if changed_paths is not None else None,
            },
        )
        return event


@dataclass(frozen=True)
class TriggerFilter:
    """Branch and path filters from the workflow's push/pull_request triggers.

    Patterns use the workflow filter syntax (see filter_pattern_regex), with
    ``!`` prefixed exclusions. An empty pattern list matches everything.
    """

    branches: tuple[str, ...] = ("main",)
    paths: tuple[str, ...] = ()

    def branch_matches(self, branch: str | None) -> bool:
        if not self.branches:
            return True
        if branch is None:
            return False
        return matches_filter(branch, self.branches)

    def paths_match(self, changed_paths: tuple[str, ...] | None) -> bool:
        # Unknown change sets are not filtered; the runner already applied
        # the workflow's own path filter before starting the job.
        if not self.paths or changed_paths is None:
            return True
        return any(matches_filter(path, self.paths) for path in changed_paths)

    def rejection_reason(self, event: TriggerEvent) -> str | None:
        """Explain why an event is filtered out, or None if it passes.

        Manual dispatch is never filtered.
        """
        if event.context is TriggerContext.MANUAL_DISPATCH:
            return None

        if not self.branch_matches(event.branch):
            return f"branch {event.branch!r} does not match {list(self.branches)}"

        if not self.paths_match(event.changed_paths):
            return f"no changed path matches {list(self.paths)}"

        return None

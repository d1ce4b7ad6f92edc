"""Security enforcement for identity federation (OIDC).

The pipeline logs in to Azure with a short-lived federated token exchanged
for the workflow's OIDC token. Static service principal secrets are never
needed, so their presence in the job environment is treated as a leak.

SECURITY INVARIANTS:
1. No client secret, certificate or password variable may be present
2. Federation requires a client ID, tenant ID and subscription ID
3. Token validation is left to Entra ID; this module only inspects the
   environment the job is about to hand to the provisioning engine
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Environment variables that indicate static credentials.
# ARM_* are read by the Terraform azurerm provider, AZURE_* by the Azure CLI/SDK.
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
    "ARM_CLIENT_SECRET",
    "ARM_CLIENT_CERTIFICATE_PATH",
    "ARM_CLIENT_CERTIFICATE_PASSWORD",
    "ARM_ACCESS_KEY",
)

# Variables the federated login step needs
FEDERATION_ENV_VARS: tuple[tuple[str, str], ...] = (
    ("AZURE_CLIENT_ID", "ARM_CLIENT_ID"),
    ("AZURE_TENANT_ID", "ARM_TENANT_ID"),
    ("AZURE_SUBSCRIPTION_ID", "ARM_SUBSCRIPTION_ID"),
)

SECRETLESS_VIOLATION_MESSAGE = """
SECURITY VIOLATION: static credential detected ({env_var}).

This pipeline authenticates to Azure with OpenID Connect federation only.
Remove the secret from the workflow environment and repository secrets,
then configure a federated credential on the deployment identity:
https://learn.microsoft.com/entra/workload-id/workload-identity-federation
"""


class SecretlessViolationError(Exception):
    """Raised when a static credential is present in the job environment.

    This is a fatal security error; no gate opens.
    """

    pass


@dataclass(frozen=True)
class FederationStatus:
    """Which federation variables are present."""

    missing: tuple[str, ...] = ()

    @property
    def is_complete(self) -> bool:
        return not self.missing


def enforce_secretless(environ: Mapping[str, str] | None = None) -> None:
    """Enforce that no static credentials are present in the environment.

    Args:
        environ: Environment mapping (defaults to os.environ).

    Raises:
        SecretlessViolationError: If any credential environment variable is set.
    """
    env = os.environ if environ is None else environ

    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if env.get(env_var):
            logger.critical(
                "Secretless violation",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "gate_blocked",
                },
            )
            raise SecretlessViolationError(SECRETLESS_VIOLATION_MESSAGE.format(env_var=env_var))

    logger.info(
        "Secretless environment verified",
        extra={"security_event": "secretless_verified", "credential_type": "OIDC"},
    )


def check_federation(environ: Mapping[str, str] | None = None) -> FederationStatus:
    """Report which federation variables are missing.

    Either the AZURE_* or the ARM_* spelling satisfies a requirement.
    """
    env = os.environ if environ is None else environ

    missing = tuple(
        azure_name
        for azure_name, arm_name in FEDERATION_ENV_VARS
        if not (env.get(azure_name) or env.get(arm_name))
    )

    if missing:
        logger.warning(
            "Federated login variables missing",
            extra={"security_event": "federation_incomplete", "missing": list(missing)},
        )

    return FederationStatus(missing=missing)

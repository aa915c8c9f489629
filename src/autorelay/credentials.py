"""Map stored credentials to environment variables for script tasks."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable

from sqlmodel import Session

from .models import Credential
from .repositories import get_credential
from .vault import CredentialVault, VaultError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntegrationRule:
    """A known integration: labels containing ``pattern`` map to ``prefix`` variables."""

    pattern: str
    prefix: str

    def matches(self, label: str) -> bool:
        return self.pattern.lower() in label.lower()


KNOWN_INTEGRATIONS: tuple[IntegrationRule, ...] = (
    IntegrationRule(pattern="jira", prefix="JIRA"),
)


def env_prefix_for_label(label: str) -> str:
    prefix = re.sub(r"[^A-Z0-9]+", "_", label.strip().upper()).strip("_")
    return prefix or "CREDENTIAL"


def build_environment(
    credential: Credential,
    secret: str,
    integrations: tuple[IntegrationRule, ...] = KNOWN_INTEGRATIONS,
) -> dict[str, str]:
    """Build the variable bundle for one credential."""
    label = credential.app_name or ""
    for rule in integrations:
        if rule.matches(label):
            env = {
                f"{rule.prefix}_URL": credential.url or "",
                f"{rule.prefix}_EMAIL": credential.email or credential.username or "",
                f"{rule.prefix}_API_TOKEN": secret,
            }
            if credential.username:
                env[f"{rule.prefix}_USERNAME"] = credential.username
            return env

    prefix = env_prefix_for_label(label)
    env = {}
    if credential.url:
        env[f"{prefix}_URL"] = credential.url
    if credential.email:
        env[f"{prefix}_EMAIL"] = credential.email
    if credential.username:
        env[f"{prefix}_USERNAME"] = credential.username
    env[f"{prefix}_PASSWORD"] = secret
    env[f"{prefix}_API_TOKEN"] = secret
    return env


class CredentialResolver:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        vault: CredentialVault,
        integrations: tuple[IntegrationRule, ...] = KNOWN_INTEGRATIONS,
    ):
        self._session_factory = session_factory
        self.vault = vault
        self.integrations = integrations

    def resolve(self, credential_id: int | None, owner_id: int) -> dict[str, str]:
        """Return the env bundle for a credential owned by ``owner_id``.

        Missing, foreign or undecryptable credentials yield an empty bundle;
        the script may still have its own fallback configuration.
        """
        if credential_id is None:
            return {}
        session = self._session_factory()
        try:
            credential = get_credential(session, credential_id, owner_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("failed to load credential %s: %s", credential_id, exc)
            return {}
        finally:
            session.close()

        if credential is None:
            logger.warning("credential %s not found for owner %s", credential_id, owner_id)
            return {}

        try:
            secret = self.vault.decrypt(credential.secret)
        except VaultError as exc:
            logger.warning("credential %s could not be decrypted: %s", credential_id, exc)
            return {}

        logger.info("loaded credentials for %s (id=%s)", credential.app_name, credential.id)
        return build_environment(credential, secret, self.integrations)

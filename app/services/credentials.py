"""
Credential Resolver
===================

Looks up provider secrets by name. The default resolver reads the
application settings; deployments that keep secrets in a vault can
provide their own implementation of ``CredentialResolver``.
"""

import logging
from typing import Optional, Protocol

from app.config import Settings, settings

logger = logging.getLogger(__name__)


class CredentialResolver(Protocol):
    """Anything that can return a secret by name."""

    async def get(self, name: str) -> Optional[str]:
        ...


# Legacy names accepted for a secret when the canonical one is unset
CREDENTIAL_FALLBACKS = {
    "FLW_SECRET_HASH": ("FLUTTERWAVE_WEBHOOK_SECRET_HASH", "FLUTTERWAVE_SECRET_HASH"),
}


class SettingsCredentialResolver:
    """Resolve credentials from ``Settings`` (environment / .env)."""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or settings

    async def get(self, name: str) -> Optional[str]:
        for candidate in (name, *CREDENTIAL_FALLBACKS.get(name, ())):
            value = getattr(self.config, candidate, None)
            if value:
                return str(value).strip()
        logger.debug("Credential %s not configured", name)
        return None


def get_credential_resolver() -> CredentialResolver:
    """FastAPI dependency for the credential resolver."""
    return SettingsCredentialResolver()

"""API key validation against the client registry."""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from db.models import ClientRecord
from services.client_registry import ClientRegistry, key_prefix
from services.errors import Expired, MissingKey, Suspended, UnknownKey

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyValidator:
    def __init__(self, registry: ClientRegistry, clock: Callable[[], datetime] = _utcnow):
        self._registry = registry
        self._clock = clock

    @property
    def registry(self) -> ClientRegistry:
        return self._registry

    def replace_registry(self, registry: ClientRegistry) -> None:
        """Swap in a freshly loaded registry. Single reference assignment, so
        concurrent validations see either the old or the new one."""
        self._registry = registry
        logger.info("Client registry replaced", extra={"fields": {"clients": len(registry)}})

    def validate(self, api_key: Optional[str], ip: Optional[str] = None) -> ClientRecord:
        """Return the ClientRecord for a key or raise an AuthError subclass."""
        if not api_key:
            logger.warning("API key missing", extra={"fields": {"ip": ip}})
            raise MissingKey()

        registry = self._registry
        client = registry.get(api_key)
        if client is None:
            self._audit_failure(api_key, ip, "Invalid API key")
            raise UnknownKey()

        if not client.active:
            self._audit_failure(api_key, ip, "API key suspended", client.client_id)
            raise Suspended()

        if client.is_expired(self._clock()):
            self._audit_failure(api_key, ip, "API key expired", client.client_id)
            raise Expired()

        logger.info("API key authenticated", extra={"fields": {
            "api_key_prefix": key_prefix(api_key),
            "client_id": client.client_id,
            "plan": client.plan.value,
            "ip": ip,
        }})
        return client

    @staticmethod
    def _audit_failure(api_key: str, ip: Optional[str], error: str, client_id: str = None) -> None:
        logger.warning("Invalid API key attempt", extra={"fields": {
            "api_key_prefix": key_prefix(api_key),
            "client_id": client_id,
            "ip": ip,
            "error": error,
        }})

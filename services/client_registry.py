"""Client registry — read-only mapping from API key to ClientRecord."""

import json
import secrets
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping, Optional

from config.clients import DEFAULT_CLIENTS
from db.models import ClientRecord, PaymentModel, Plan


LIVE_KEY_PREFIX = "rk_live_"
TEST_KEY_PREFIX = "rk_test_"


class ClientRegistry:
    """Immutable view over the configured clients.

    Reloading means building a new registry and handing it to the
    KeyValidator; instances are never mutated after construction.
    """

    def __init__(self, records: Mapping[str, ClientRecord]):
        self._records = MappingProxyType(dict(records))

    @classmethod
    def from_config(cls, clients: Mapping[str, dict] = None) -> "ClientRegistry":
        clients = DEFAULT_CLIENTS if clients is None else clients
        return cls({key: ClientRecord.from_dict(key, data) for key, data in clients.items()})

    @classmethod
    def from_file(cls, path) -> "ClientRegistry":
        """Load a JSON object of ``{api_key: client_config}``."""
        with open(Path(path), "r", encoding="utf-8") as f:
            return cls.from_config(json.load(f))

    def get(self, api_key: str) -> Optional[ClientRecord]:
        return self._records.get(api_key)

    def find_by_client_id(self, client_id: str) -> Optional[ClientRecord]:
        for record in self._records.values():
            if record.client_id == client_id:
                return record
        return None

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ClientRecord]:
        return iter(self._records.values())

    def stats(self) -> dict:
        """Client counts overall, by plan and by payment model (active clients only)."""
        active = [c for c in self if c.active]
        return {
            "total_clients": len(self),
            "active_clients": len(active),
            "suspended_clients": len(self) - len(active),
            "plans_distribution": {
                plan.value: sum(1 for c in active if c.plan == plan) for plan in Plan
            },
            "payment_models": {
                model.value: sum(1 for c in active if c.payment_model == model) for model in PaymentModel
            },
        }


def generate_api_key(plan: str = "basic") -> str:
    """Generate a new key for administrative provisioning. Sandbox keys get the test prefix."""
    prefix = TEST_KEY_PREFIX if plan == Plan.SANDBOX.value else LIVE_KEY_PREFIX
    return f"{prefix}{secrets.token_urlsafe(18)}"


def key_prefix(api_key: str) -> str:
    """Loggable form of a key: the first 12 characters only."""
    return f"{api_key[:12]}..."

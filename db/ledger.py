"""Usage ledger storage. One partition per (client_id, YYYY-MM), append-only.

Two backends share the Ledger interface:
- JsonFileLedger: a JSON array per partition file, rewritten on each append.
- SqliteLedger: rows in the usage_records table.
"""

import abc
import json
import logging
import os
import re
import sqlite3
import tempfile
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Optional

from config.settings import BILLING_DIR, LEDGER_BACKEND
from db.database import get_db, init_db
from db.models import UsageRecord, rows_to_usage_records
from services.errors import PersistenceError

logger = logging.getLogger(__name__)

_PERIOD_RE = re.compile(r"^\d{4}-\d{2}$")
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


def period_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


class Ledger(abc.ABC):
    """Append + partition-scoped read. Duplicate request_ids are stored as given."""

    @abc.abstractmethod
    def append(self, record: UsageRecord) -> int:
        """Append to the record's partition, creating it if needed.
        Returns the partition size after the append."""

    @abc.abstractmethod
    def read_partition(self, client_id: str, period: str) -> Optional[list[UsageRecord]]:
        """Records of one partition in append order, or None if it does not exist."""

    @abc.abstractmethod
    def list_periods(self, client_id: str) -> list[str]:
        """Existing partition periods for a client, ascending."""


class _PartitionLocks:
    """One lock per partition key, kept only while some thread holds or waits on it."""

    def __init__(self):
        self._guard = Lock()
        self._locks: dict[tuple, list] = {}  # key -> [lock, users]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: tuple):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class JsonFileLedger(Ledger):
    def __init__(self, base_dir: Path = None):
        self.base_dir = Path(base_dir or BILLING_DIR)
        self._locks = _PartitionLocks()

    def _path(self, client_id: str, period: str) -> Path:
        if not _SAFE_ID_RE.match(client_id):
            raise PersistenceError(f"client_id not usable as a partition name: {client_id!r}")
        return self.base_dir / f"{client_id}_{period}.json"

    def _load(self, path: Path) -> Optional[list]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Unreadable ledger partition {path.name}: {e}") from e
        if not isinstance(data, list):
            raise PersistenceError(f"Ledger partition {path.name} is not a JSON array")
        return data

    def append(self, record: UsageRecord) -> int:
        path = self._path(record.client_id, record.period)
        with self._locks.hold((record.client_id, record.period)):
            entries = self._load(path)
            if entries is None:
                logger.debug("Creating new billing partition", extra={"fields": {
                    "client_id": record.client_id, "month": record.period,
                }})
                entries = []
            entries.append(record.to_dict())
            try:
                self.base_dir.mkdir(parents=True, exist_ok=True)
                fd, tmp = tempfile.mkstemp(dir=self.base_dir, prefix=f".{path.stem}.", suffix=".tmp")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        json.dump(entries, f, indent=2)
                    os.replace(tmp, path)
                except BaseException:
                    if os.path.exists(tmp):
                        os.unlink(tmp)
                    raise
            except OSError as e:
                raise PersistenceError(f"Failed to write ledger partition {path.name}: {e}") from e
            return len(entries)

    def read_partition(self, client_id: str, period: str) -> Optional[list[UsageRecord]]:
        # Appends land via os.replace, so a lock-free read sees a complete file.
        entries = self._load(self._path(client_id, period))
        if entries is None:
            return None
        try:
            return [UsageRecord.from_dict(e) for e in entries]
        except (KeyError, ValueError, TypeError) as e:
            raise PersistenceError(f"Malformed record in {client_id}_{period}: {e}") from e

    def list_periods(self, client_id: str) -> list[str]:
        if not self.base_dir.exists():
            return []
        prefix = f"{client_id}_"
        periods = []
        for path in self.base_dir.glob(f"{prefix}*.json"):
            period = path.stem[len(prefix):]
            if _PERIOD_RE.match(period):
                periods.append(period)
        return sorted(periods)


class SqliteLedger(Ledger):
    def __init__(self, db_path: Path = None):
        self.db_path = db_path
        try:
            init_db(db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot initialise usage database: {e}") from e

    def append(self, record: UsageRecord) -> int:
        row = record.to_dict()
        try:
            with get_db(self.db_path) as conn:
                conn.execute(
                    """INSERT INTO usage_records
                       (client_id, period, timestamp, request_id, category, processing_time_ms,
                        billable_amount, status, api_version, risk_label, risk_score, confidence, pdf_size_kb)
                       VALUES (:client_id, :period, :timestamp, :request_id, :category, :processing_time_ms,
                               :billable_amount, :status, :api_version, :risk_label, :risk_score,
                               :confidence, :pdf_size_kb)""",
                    {**row, "period": record.period},
                )
                (count,) = conn.execute(
                    "SELECT COUNT(*) FROM usage_records WHERE client_id = ? AND period = ?",
                    (record.client_id, record.period),
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to insert usage record: {e}") from e
        return count

    def read_partition(self, client_id: str, period: str) -> Optional[list[UsageRecord]]:
        try:
            with get_db(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT * FROM usage_records WHERE client_id = ? AND period = ? ORDER BY seq",
                    (client_id, period),
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read usage records: {e}") from e
        if not rows:
            return None
        return rows_to_usage_records(rows)

    def list_periods(self, client_id: str) -> list[str]:
        try:
            with get_db(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT DISTINCT period FROM usage_records WHERE client_id = ? ORDER BY period",
                    (client_id,),
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to list usage periods: {e}") from e
        return [r["period"] for r in rows]


def create_ledger(backend: str = None) -> Ledger:
    backend = backend or LEDGER_BACKEND
    if backend == "sqlite":
        return SqliteLedger()
    if backend == "json":
        return JsonFileLedger()
    raise ValueError(f"Unknown ledger backend: {backend}")

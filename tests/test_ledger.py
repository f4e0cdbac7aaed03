"""Tests for the usage ledger backends and usage recording."""

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from db.ledger import JsonFileLedger, SqliteLedger, create_ledger, period_key
from db.models import UsageRecord, UsageStatus
from services.billing_service import build_usage_record, record_usage, record_usage_safely
from services.errors import LedgerError, PersistenceError


def make_record(client_id="banco_grande", request_id="req_1", when=None,
                amount="2.50", status=UsageStatus.SUCCESS, **kwargs):
    return UsageRecord(
        timestamp=when or datetime(2025, 6, 15, 10, 30, tzinfo=timezone.utc),
        client_id=client_id,
        request_id=request_id,
        category=kwargs.pop("category", "balance"),
        processing_time_ms=kwargs.pop("processing_time_ms", 1200),
        billable_amount=Decimal(amount),
        status=status,
        **kwargs,
    )


@pytest.fixture(params=["json", "sqlite"])
def any_ledger(request, tmp_path):
    if request.param == "json":
        return JsonFileLedger(tmp_path / "billing")
    return SqliteLedger(tmp_path / "usage.db")


class FailingLedger(JsonFileLedger):
    def append(self, record):
        raise PersistenceError("disk full")


class TestPartitions:
    def test_missing_partition_is_none(self, any_ledger):
        assert any_ledger.read_partition("banco_grande", "2025-05") is None

    def test_append_returns_partition_size(self, any_ledger):
        assert any_ledger.append(make_record(request_id="a")) == 1
        assert any_ledger.append(make_record(request_id="b")) == 2

    def test_records_read_back_in_order(self, any_ledger):
        for i in range(3):
            any_ledger.append(make_record(request_id=f"req_{i}"))
        records = any_ledger.read_partition("banco_grande", "2025-06")
        assert [r.request_id for r in records] == ["req_0", "req_1", "req_2"]
        assert records[0].billable_amount == Decimal("2.5")
        assert records[0].status == UsageStatus.SUCCESS

    def test_partitioned_by_utc_month(self, any_ledger):
        any_ledger.append(make_record(when=datetime(2025, 6, 30, 23, 59, tzinfo=timezone.utc)))
        any_ledger.append(make_record(when=datetime(2025, 7, 1, 0, 0, tzinfo=timezone.utc)))
        assert len(any_ledger.read_partition("banco_grande", "2025-06")) == 1
        assert len(any_ledger.read_partition("banco_grande", "2025-07")) == 1
        assert any_ledger.list_periods("banco_grande") == ["2025-06", "2025-07"]

    def test_partitioned_by_client(self, any_ledger):
        any_ledger.append(make_record(client_id="banco_grande"))
        any_ledger.append(make_record(client_id="sandbox_testing", amount="0", request_id="s1"))
        assert len(any_ledger.read_partition("banco_grande", "2025-06")) == 1
        assert any_ledger.read_partition("sandbox_testing", "2025-06")[0].request_id == "s1"
        assert any_ledger.list_periods("unknown_client") == []

    def test_duplicate_request_ids_kept(self, any_ledger):
        any_ledger.append(make_record(request_id="dup"))
        any_ledger.append(make_record(request_id="dup"))
        assert len(any_ledger.read_partition("banco_grande", "2025-06")) == 2

    def test_optional_fields_round_trip(self, any_ledger):
        any_ledger.append(make_record(risk_label="SOLVENTE", risk_score=72.0, confidence=0.91, pdf_size_kb=300))
        any_ledger.append(make_record(request_id="t", amount="0", status=UsageStatus.TIMEOUT, category=None))
        first, second = any_ledger.read_partition("banco_grande", "2025-06")
        assert (first.risk_label, first.risk_score, first.pdf_size_kb) == ("SOLVENTE", 72.0, 300)
        assert second.status == UsageStatus.TIMEOUT
        assert second.category is None
        assert second.risk_label is None


class TestConcurrentAppends:
    def test_json_no_lost_writes(self, ledger):
        def append(i):
            return ledger.append(make_record(request_id=f"req_{i}"))

        with ThreadPoolExecutor(max_workers=16) as pool:
            sizes = list(pool.map(append, range(100)))

        records = ledger.read_partition("banco_grande", "2025-06")
        assert len(records) == 100
        assert len({r.request_id for r in records}) == 100
        assert sorted(sizes) == list(range(1, 101))

    def test_sqlite_no_lost_writes(self, tmp_path):
        ledger = SqliteLedger(tmp_path / "usage.db")

        def append(i):
            ledger.append(make_record(request_id=f"req_{i}"))

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(append, range(40)))

        assert len(ledger.read_partition("banco_grande", "2025-06")) == 40


class TestJsonFileLedger:
    def test_file_layout(self, ledger):
        ledger.append(make_record())
        assert (ledger.base_dir / "banco_grande_2025-06.json").exists()
        assert not list(ledger.base_dir.glob("*.tmp"))

    def test_corrupt_partition(self, ledger):
        ledger.base_dir.mkdir(parents=True)
        (ledger.base_dir / "banco_grande_2025-06.json").write_text("{not json")
        with pytest.raises(PersistenceError):
            ledger.read_partition("banco_grande", "2025-06")
        with pytest.raises(PersistenceError):
            ledger.append(make_record())

    def test_partition_must_be_array(self, ledger):
        ledger.base_dir.mkdir(parents=True)
        (ledger.base_dir / "banco_grande_2025-06.json").write_text('{"a": 1}')
        with pytest.raises(PersistenceError):
            ledger.read_partition("banco_grande", "2025-06")

    def test_unsafe_client_id(self, ledger):
        with pytest.raises(PersistenceError):
            ledger.read_partition("../etc", "2025-06")

    def test_list_periods_ignores_foreign_files(self, ledger):
        ledger.append(make_record())
        (ledger.base_dir / "banco_grande_notes.json").write_text("[]")
        assert ledger.list_periods("banco_grande") == ["2025-06"]

    def test_amounts_stored_exactly(self, ledger):
        ledger.append(make_record(amount="0.10"))
        raw = json.loads((ledger.base_dir / "banco_grande_2025-06.json").read_text())
        assert raw[0]["billable_amount"] == "0.10"
        assert ledger.read_partition("banco_grande", "2025-06")[0].billable_amount == Decimal("0.10")

    def test_reads_legacy_float_amounts(self, ledger):
        entry = make_record().to_dict()
        entry["billable_amount"] = 2.5
        ledger.base_dir.mkdir(parents=True)
        (ledger.base_dir / "banco_grande_2025-06.json").write_text(json.dumps([entry]))
        assert ledger.read_partition("banco_grande", "2025-06")[0].billable_amount == Decimal("2.5")

    def test_partition_locks_released_after_append(self, ledger):
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda i: ledger.append(make_record(request_id=f"req_{i}")), range(20)))
        ledger.append(make_record(when=datetime(2025, 7, 1, tzinfo=timezone.utc)))
        assert len(ledger._locks) == 0


class TestUsageRecord:
    def test_only_success_is_billable(self):
        with pytest.raises(ValueError):
            make_record(status=UsageStatus.ERROR, amount="2.50")

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            make_record(amount="-1")

    def test_period_uses_utc(self):
        local = timezone(timedelta(hours=2))
        record = make_record(when=datetime(2025, 7, 1, 1, 0, tzinfo=local))
        assert record.period == "2025-06"
        assert record.day == "2025-06-30"

    def test_period_key(self):
        assert period_key(2025, 6) == "2025-06"


class TestRecordUsage:
    def test_build_bills_success(self, registry):
        client = registry.get("rk_live_premium345678")
        usage = build_usage_record(client, "req_1", "balance", 1500, UsageStatus.SUCCESS,
                                   result={"risk_assessment": "SOLVENTE", "risk_score": "72", "confidence": 0.9})
        assert usage.billable_amount == Decimal("2.50")
        assert usage.risk_score == 72.0
        assert usage.risk_label == "SOLVENTE"

    @pytest.mark.parametrize("status", [UsageStatus.ERROR, UsageStatus.TIMEOUT])
    def test_build_does_not_bill_failures(self, registry, status):
        client = registry.get("rk_live_premium345678")
        usage = build_usage_record(client, "req_1", "balance", 60000, status)
        assert usage.billable_amount == 0

    def test_record_usage(self, ledger):
        assert record_usage(ledger, "banco_grande", make_record()) == 1

    def test_record_usage_rejects_foreign_record(self, ledger):
        with pytest.raises(ValueError):
            record_usage(ledger, "other_client", make_record())

    def test_record_usage_propagates_failure(self, tmp_path):
        with pytest.raises(LedgerError):
            record_usage(FailingLedger(tmp_path), "banco_grande", make_record())

    def test_record_usage_safely_swallows_failure(self, tmp_path, caplog):
        assert record_usage_safely(FailingLedger(tmp_path), "banco_grande", make_record()) is False
        assert "Failed to record usage" in caplog.text

    def test_record_usage_safely_success(self, ledger):
        assert record_usage_safely(ledger, "banco_grande", make_record()) is True


class TestFactory:
    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_ledger("redis")

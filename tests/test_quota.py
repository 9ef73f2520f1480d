"""Tests for src.data.db.QuotaLedger — per-user, per-local-day budgets."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from src.data.db import QuotaLedger


@pytest.fixture
def ledger(tmp_db_path):
    return QuotaLedger("ai", 20, db_path=tmp_db_path)


class TestReserve:
    def test_reserves_up_to_limit(self, ledger, stores, user):
        for _ in range(20):
            assert ledger.reserve(user.id, "2025-03-10")
        assert not ledger.reserve(user.id, "2025-03-10")
        assert ledger.used(user.id, "2025-03-10") == 20

    def test_new_local_day_resets(self, ledger, stores, user):
        for _ in range(20):
            ledger.reserve(user.id, "2025-03-10")
        assert ledger.reserve(user.id, "2025-03-11")
        assert ledger.used(user.id, "2025-03-11") == 1
        assert ledger.used(user.id, "2025-03-10") == 0

    def test_zero_limit_never_reserves(self, tmp_db_path, stores, user):
        assert not QuotaLedger("ai", 0, db_path=tmp_db_path).reserve(user.id, "2025-03-10")

    def test_unknown_user(self, ledger):
        assert not ledger.reserve(999, "2025-03-10")

    def test_unknown_kind(self, tmp_db_path):
        with pytest.raises(ValueError, match="Unknown quota kind"):
            QuotaLedger("sms", 5, db_path=tmp_db_path)

    def test_concurrent_reservations_never_exceed_limit(self, ledger, stores, user):
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: ledger.reserve(user.id, "2025-03-10"), range(25)))
        assert results.count(True) == 20
        assert ledger.used(user.id, "2025-03-10") == 20


class TestRollback:
    def test_reserve_then_rollback_nets_zero(self, ledger, stores, user):
        ledger.reserve(user.id, "2025-03-10")
        ledger.reserve(user.id, "2025-03-10")
        ledger.rollback(user.id)
        assert ledger.used(user.id, "2025-03-10") == 1

    def test_rollback_floors_at_zero(self, ledger, stores, user):
        ledger.rollback(user.id)
        assert ledger.used(user.id, "2025-03-10") == 0

    def test_rollback_frees_a_slot(self, ledger, stores, user):
        for _ in range(20):
            ledger.reserve(user.id, "2025-03-10")
        ledger.rollback(user.id)
        assert ledger.reserve(user.id, "2025-03-10")


def test_budgets_are_independent(stores, user):
    for _ in range(stores.stuck_quota.limit):
        assert stores.stuck_quota.reserve(user.id, "2025-03-10")
    assert not stores.stuck_quota.reserve(user.id, "2025-03-10")
    assert stores.ai_quota.reserve(user.id, "2025-03-10")
    assert stores.ai_quota.used(user.id, "2025-03-10") == 1

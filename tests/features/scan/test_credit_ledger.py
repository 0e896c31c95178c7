import threading

from sqlalchemy import func, select

from safescan.features.scan.errors import ScanErrorCode
from safescan.features.scan.models import ScanJob, ScanJobState


def _job_count(session_factory, user_id="u1"):
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(ScanJob).where(ScanJob.user_id == user_id)).scalar_one()


def test_unknown_user_gets_an_empty_wallet(ledger):
    balance = ledger.get_balance("newcomer")
    assert balance.is_ok()
    assert balance.value.balance == 0


def test_reserve_debits_and_creates_queued_job(ledger, job_store):
    ledger.add_credits("u1", 5)

    reserved = ledger.reserve_and_create_job("u1", "https://example.com", 1)

    assert reserved.is_ok()
    job = reserved.value
    assert job.state == ScanJobState.QUEUED
    assert job.version == 1
    assert ledger.get_balance("u1").value.balance == 4
    assert job_store.get(job.id).value.url == "https://example.com"


def test_insufficient_credits_leaves_no_trace(ledger, session_factory):
    reserved = ledger.reserve_and_create_job("u1", "https://example.com", 1)

    assert reserved.is_err()
    assert reserved.error.code == ScanErrorCode.INSUFFICIENT_CREDITS
    assert reserved.error.details == {"required": 1, "available": 0}
    assert reserved.error.message == "Insufficient credits. Required: 1, Available: 0"
    assert ledger.get_balance("u1").value.balance == 0
    assert _job_count(session_factory) == 0


def test_add_credits_rejects_non_positive_amounts(ledger):
    assert ledger.add_credits("u1", 0).error.code == ScanErrorCode.VALIDATION_ERROR
    assert ledger.add_credits("u1", 3).value.balance == 3


def test_concurrent_reservations_never_overspend(ledger, session_factory):
    balance, cost, workers = 7, 2, 10
    ledger.add_credits("u1", balance)
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def reserve():
        barrier.wait()
        outcome = ledger.reserve_and_create_job("u1", "https://example.com", cost)
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=reserve) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    successes = [r for r in results if r.is_ok()]
    failures = [r for r in results if r.is_err()]
    assert len(successes) == balance // cost
    assert all(r.error.code == ScanErrorCode.INSUFFICIENT_CREDITS for r in failures)
    assert ledger.get_balance("u1").value.balance == balance - cost * len(successes)
    assert _job_count(session_factory) == len(successes)


def test_concurrent_first_touch_provisions_one_wallet(ledger):
    workers = 6
    barrier = threading.Barrier(workers)
    balances = []

    def touch():
        barrier.wait()
        balances.append(ledger.get_balance("fresh-user"))

    threads = [threading.Thread(target=touch) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert all(b.is_ok() and b.value.balance == 0 for b in balances)

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from retailpos.extensions import db
from retailpos.models import Location
from retailpos.routes.responses import error_response
from retailpos.services.concurrency import run_with_retry, stock_lock_order
from retailpos.services.errors import ConcurrencyConflict, IntegrityConflict, InsufficientStock


class FlakyOp:
    """Adds a pending row, then fails the first `failures` calls with `exc`."""

    def __init__(self, exc, failures):
        self.exc = exc
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        db.session.add(Location(name=f"Attempt {self.calls}"))
        if self.calls <= self.failures:
            raise self.exc
        db.session.commit()
        return self.calls


def _lock_timeout():
    return OperationalError("UPDATE location_inventory", {}, Exception("database is locked"))


@pytest.mark.parametrize("exc_factory", [_lock_timeout, lambda: StaleDataError("version mismatch")])
def test_retry_gives_up_with_concurrency_conflict(db_session, exc_factory):
    op = FlakyOp(exc_factory(), failures=10)

    with pytest.raises(ConcurrencyConflict) as info:
        run_with_retry(op, attempts=3, backoff_base=0)

    assert op.calls == 3
    assert info.value.retryable is True
    assert info.value.details == {"attempts": 3}
    assert not db.session.new
    assert db.session.query(Location).count() == 0


def test_retry_recovers_after_transient_failure(db_session):
    op = FlakyOp(_lock_timeout(), failures=1)

    assert run_with_retry(op, attempts=3, backoff_base=0) == 2

    assert [loc.name for loc in db.session.query(Location).all()] == ["Attempt 2"]


def test_attempts_default_from_config(app, db_session):
    op = FlakyOp(_lock_timeout(), failures=10)
    app.config["RETRY_ATTEMPTS"] = 2
    try:
        with pytest.raises(ConcurrencyConflict):
            run_with_retry(op)
    finally:
        app.config["RETRY_ATTEMPTS"] = 3
    assert op.calls == 2


def test_integrity_error_is_not_retried(db_session):
    op = FlakyOp(IntegrityError("INSERT INTO sales", {}, Exception("UNIQUE constraint failed: sales.invoice")), 10)

    with pytest.raises(IntegrityConflict) as info:
        run_with_retry(op, attempts=3, backoff_base=0)

    assert op.calls == 1
    assert "UNIQUE constraint failed" in str(info.value)
    assert info.value.retryable is False
    assert not db.session.new


def test_business_errors_propagate_unchanged(db_session):
    exc = InsufficientStock(item_id=1, location_id=1, available=0, requested=2)
    op = FlakyOp(exc, failures=10)

    with pytest.raises(InsufficientStock) as info:
        run_with_retry(op, attempts=3, backoff_base=0)

    assert info.value is exc
    assert op.calls == 1
    assert not db.session.new


def test_error_response_status_codes(app, db_session):
    resp, status = error_response(ConcurrencyConflict("busy", details={"attempts": 3}))
    assert status == 503
    assert resp.get_json()["retryable"] is True
    assert resp.get_json()["code"] == "ConcurrencyConflict"

    resp, status = error_response(IntegrityConflict("duplicate"))
    assert status == 409
    assert "retryable" not in resp.get_json()


def test_stock_lock_order_sorts_and_deduplicates():
    pairs = [(2, 1), (1, 5), (2, 1), (1, 2)]
    assert stock_lock_order(pairs) == [(1, 2), (1, 5), (2, 1)]
    assert stock_lock_order(iter([])) == []

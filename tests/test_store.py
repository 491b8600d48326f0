import pytest
from sqlalchemy.exc import OperationalError

from storefront.core.errors import PersistenceError
from storefront.db.store import RecordStore
from storefront.models.checkout import CheckoutSession


class _AbortingSession:
    """Session whose reads fail the way an aborted Postgres transaction does."""

    def __init__(self):
        self.rollbacks = 0

    def get(self, model, record_id):
        raise OperationalError("SELECT", {}, Exception("current transaction is aborted"))

    def execute(self, statement):
        raise OperationalError("SELECT", {}, Exception("current transaction is aborted"))

    def rollback(self):
        self.rollbacks += 1


def test_failed_get_rolls_back_the_session():
    session = _AbortingSession()
    with pytest.raises(PersistenceError):
        RecordStore(session, CheckoutSession).get("cs_missing")
    assert session.rollbacks == 1


def test_failed_query_rolls_back_the_session():
    session = _AbortingSession()
    with pytest.raises(PersistenceError):
        RecordStore(session, CheckoutSession).find_one("customer_email", "buyer@example.com")
    assert session.rollbacks == 1

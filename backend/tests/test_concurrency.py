# Overview: Pytest coverage for transaction and conflict-retry helpers.

import pytest
from sqlalchemy.orm.exc import StaleDataError

from stockflow.errors import ConcurrentModificationError, OverShipmentError
from stockflow.models import Warehouse
from stockflow.services.concurrency import run_in_transaction, run_with_retry
from stockflow.services.document_service import next_document_number
from stockflow.time_utils import utcnow

from conftest import OTHER_TENANT_ID, TENANT_ID


class TestRunWithRetry:

    def test_conflict_then_success(self, db_session):
        attempts = []

        def _op():
            attempts.append(1)
            if len(attempts) == 1:
                raise StaleDataError("version mismatch")
            return "ok"

        assert run_with_retry(_op) == "ok"
        assert len(attempts) == 2

    def test_conflict_on_every_attempt(self, db_session):
        def _op():
            raise StaleDataError("version mismatch")

        with pytest.raises(ConcurrentModificationError):
            run_with_retry(_op, attempts=2)

    def test_domain_errors_are_not_retried(self, db_session):
        attempts = []

        def _op():
            attempts.append(1)
            raise OverShipmentError("too much")

        with pytest.raises(OverShipmentError):
            run_with_retry(_op)
        assert len(attempts) == 1


class TestRunInTransaction:

    def test_commits_on_success(self, db_session):
        def _op():
            warehouse = Warehouse(tenant_id=TENANT_ID, code="W1", name="W1")
            db_session.add(warehouse)
            return warehouse

        run_in_transaction(_op)
        db_session.rollback()

        assert db_session.query(Warehouse).filter_by(code="W1").count() == 1

    def test_rolls_back_on_error(self, db_session):
        def _op():
            db_session.add(Warehouse(tenant_id=TENANT_ID, code="W2", name="W2"))
            db_session.flush()
            raise OverShipmentError("too much")

        with pytest.raises(OverShipmentError):
            run_in_transaction(_op)

        assert db_session.query(Warehouse).filter_by(code="W2").count() == 0


class TestDocumentNumbers:

    def test_sequences_are_per_tenant_and_type(self, db_session):
        year = utcnow().year

        first = next_document_number(tenant_id=TENANT_ID, document_type="STOCK_MOVEMENT", prefix="MS")
        second = next_document_number(tenant_id=TENANT_ID, document_type="STOCK_MOVEMENT", prefix="MS")
        other_tenant = next_document_number(tenant_id=OTHER_TENANT_ID, document_type="STOCK_MOVEMENT", prefix="MS")
        other_type = next_document_number(tenant_id=TENANT_ID, document_type="STOCK_RETURN", prefix="DV")
        db_session.commit()

        assert first == f"MS-{year}-000001"
        assert second == f"MS-{year}-000002"
        assert other_tenant == f"MS-{year}-000001"
        assert other_type == f"DV-{year}-000001"

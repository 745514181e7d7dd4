"""
Tests for the owner directory: PartyService writes, PartySelector reads,
and the directory adapters the reconciliation service consumes.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from inventory_kernel.domain.linking import DebtRecord, LinkOwnerType, OwnerRecord
from inventory_kernel.exceptions import DebtNotFoundError, PartyNotFoundError
from inventory_kernel.selectors.party_selector import (
    OwnerDirectory,
    PartySelector,
    StaticOwnerDirectory,
)
from inventory_kernel.services.party_service import PartyService
from inventory_services.reconciliation_service import DatabaseOwnerDirectory

CUSTOMER = LinkOwnerType.CUSTOMER
SUPPLIER = LinkOwnerType.SUPPLIER


@pytest.fixture
def parties(add_party):
    seen = datetime(2024, 2, 1, 10, 0, tzinfo=timezone.utc)
    add_party("C8", "Sara Ali", phone="0507654321", last_transaction_at=seen)
    add_party("C7", "Ahmed Hassan", phone="0501234567", debt="1200")
    add_party("S2", "Nour Traders", party_type=SUPPLIER, debt="300")
    add_party("E1", "Omar Khaled", party_type=LinkOwnerType.EMPLOYEE)


class TestPartySelector:
    def test_owners_ordered_by_type_then_code(self, parties, db):
        with db.session_scope() as session:
            owners = PartySelector(session).list_owners()

        assert [(o.owner_type.value, o.owner_id) for o in owners] == [
            ("customer", "C7"),
            ("customer", "C8"),
            ("employee", "E1"),
            ("supplier", "S2"),
        ]

    def test_filter_by_type(self, parties, db):
        with db.session_scope() as session:
            owners = PartySelector(session).list_owners(SUPPLIER)
        assert [o.owner_id for o in owners] == ["S2"]

    def test_last_transaction_is_utc(self, parties, db):
        with db.session_scope() as session:
            sara = next(o for o in PartySelector(session).list_owners() if o.owner_id == "C8")
        assert sara.last_transaction_at == datetime(2024, 2, 1, 10, 0, tzinfo=timezone.utc)

    def test_inactive_parties_are_hidden(self, parties, db, clock):
        with db.session_scope() as session:
            PartyService(session, clock).deactivate_party(CUSTOMER, "C8")

        with db.session_scope() as session:
            ids = [o.owner_id for o in PartySelector(session).list_owners()]
        assert "C8" not in ids

    def test_outstanding_debts(self, parties, db):
        with db.session_scope() as session:
            debts = PartySelector(session).outstanding_debts()

        assert [(d.owner_id, d.amount) for d in debts] == [
            ("C7", Decimal("1200")),
            ("S2", Decimal("300")),
        ]
        assert debts[0].document_ref == "INV-C7"

    def test_settled_debts_are_hidden(self, parties, db, clock):
        with db.session_scope() as session:
            service = PartyService(session, clock)
            debt_id = service.record_debt(CUSTOMER, "C8", Decimal("75"), document_ref="INV-9")
            service.settle_debt(debt_id)

        with db.session_scope() as session:
            owners = {d.owner_id for d in PartySelector(session).outstanding_debts()}
        assert "C8" not in owners


class TestPartyService:
    def test_unknown_party(self, db, clock):
        with db.session_scope() as session:
            with pytest.raises(PartyNotFoundError):
                PartyService(session, clock).get_party(CUSTOMER, "C404")

    def test_debt_must_be_positive(self, parties, db, clock):
        with db.session_scope() as session:
            with pytest.raises(ValueError):
                PartyService(session, clock).record_debt(CUSTOMER, "C7", Decimal("0"))

    def test_settle_unknown_debt(self, db, clock):
        from uuid import uuid4

        with db.session_scope() as session:
            with pytest.raises(DebtNotFoundError):
                PartyService(session, clock).settle_debt(uuid4())

    def test_touch_transaction_uses_clock(self, parties, db, clock):
        with db.session_scope() as session:
            info = PartyService(session, clock).touch_transaction(CUSTOMER, "C7")
        assert info.last_transaction_at == clock.now()


class TestDirectoryAdapters:
    def test_database_directory_matches_selector(self, parties, db):
        directory = DatabaseOwnerDirectory(db)

        with db.session_scope() as session:
            selector = PartySelector(session)
            owners = selector.list_owners()
            debts = selector.outstanding_debts()

        assert list(directory.list_owners()) == owners
        assert list(directory.outstanding_debts()) == debts
        assert isinstance(directory, OwnerDirectory)

    def test_static_directory(self):
        owner = OwnerRecord("C1", CUSTOMER, "Ahmed Hassan")
        debt = DebtRecord("C1", CUSTOMER, Decimal("10"))
        directory = StaticOwnerDirectory([owner], [debt])

        assert directory.list_owners() == (owner,)
        assert directory.outstanding_debts() == (debt,)
        assert isinstance(directory, OwnerDirectory)

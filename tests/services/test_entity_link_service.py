"""
Tests for EntityLinkService and InstrumentRegistry.

Covers:
- Link creation, replacement, promotion and no-op writes
- User supremacy over system writes
- Link removal
- Instrument registration, lookup and status changes
"""

from datetime import date
from decimal import Decimal

import pytest

from inventory_kernel.domain.linking import (
    Confidence,
    EntityType,
    InstrumentStatus,
    LinkableEntity,
    LinkedBy,
    LinkOwnerType,
)
from inventory_kernel.exceptions import InstrumentNotFoundError
from inventory_kernel.services.entity_link_service import LinkWriteStatus

CUSTOMER = LinkOwnerType.CUSTOMER
CHECK = EntityType.CHECK


class TestPutLink:
    def test_create(self, links):
        outcome = links.put_link("CHK-1", CHECK, "C7", CUSTOMER, Confidence.HIGH, LinkedBy.SYSTEM,
                                 Decimal("100"))

        assert outcome.status == LinkWriteStatus.CREATED
        assert outcome.changed
        assert outcome.previous is None
        stored = links.get_link("CHK-1", CHECK)
        assert stored.owner_id == "C7"
        assert stored.linked_by == LinkedBy.SYSTEM
        assert stored.score == Decimal("100")

    def test_identical_write_is_unchanged(self, links):
        links.put_link("CHK-1", CHECK, "C7", CUSTOMER, Confidence.HIGH, LinkedBy.SYSTEM)
        outcome = links.put_link("CHK-1", CHECK, "C7", CUSTOMER, Confidence.HIGH, LinkedBy.SYSTEM)

        assert outcome.status == LinkWriteStatus.UNCHANGED
        assert not outcome.changed

    def test_system_replaces_system(self, links):
        links.put_link("CHK-1", CHECK, "C7", CUSTOMER, Confidence.MEDIUM, LinkedBy.SYSTEM)
        outcome = links.put_link("CHK-1", CHECK, "C8", CUSTOMER, Confidence.HIGH, LinkedBy.SYSTEM)

        assert outcome.status == LinkWriteStatus.REPLACED
        assert outcome.previous.owner_id == "C7"
        assert links.get_link("CHK-1", CHECK).owner_id == "C8"

    def test_system_never_replaces_user(self, links):
        links.put_link("CHK-1", CHECK, "C7", CUSTOMER, Confidence.HIGH, LinkedBy.USER)
        outcome = links.put_link("CHK-1", CHECK, "C8", CUSTOMER, Confidence.HIGH, LinkedBy.SYSTEM)

        assert outcome.status == LinkWriteStatus.SKIPPED_USER_LINK
        stored = links.get_link("CHK-1", CHECK)
        assert stored.owner_id == "C7"
        assert stored.linked_by == LinkedBy.USER

    def test_user_replaces_user(self, links):
        links.put_link("CHK-1", CHECK, "C7", CUSTOMER, Confidence.HIGH, LinkedBy.USER)
        outcome = links.put_link("CHK-1", CHECK, "S2", LinkOwnerType.SUPPLIER, Confidence.HIGH,
                                 LinkedBy.USER)

        assert outcome.status == LinkWriteStatus.REPLACED
        assert links.get_link("CHK-1", CHECK).owner_type == LinkOwnerType.SUPPLIER

    def test_user_promotes_same_owner_system_link(self, links):
        links.put_link("CHK-1", CHECK, "C7", CUSTOMER, Confidence.MEDIUM, LinkedBy.SYSTEM)
        outcome = links.put_link("CHK-1", CHECK, "C7", CUSTOMER, Confidence.HIGH, LinkedBy.USER)

        assert outcome.status == LinkWriteStatus.PROMOTED
        assert links.get_link("CHK-1", CHECK).linked_by == LinkedBy.USER

    def test_entity_types_are_separate_keys(self, links):
        links.put_link("X-1", CHECK, "C7", CUSTOMER, Confidence.HIGH, LinkedBy.SYSTEM)
        links.put_link("X-1", EntityType.INSTALLMENT, "C8", CUSTOMER, Confidence.HIGH,
                       LinkedBy.SYSTEM)

        assert links.get_link("X-1", CHECK).owner_id == "C7"
        assert links.get_link("X-1", EntityType.INSTALLMENT).owner_id == "C8"


class TestRemoveLink:
    def test_remove_returns_link(self, links):
        links.put_link("CHK-1", CHECK, "C7", CUSTOMER, Confidence.HIGH, LinkedBy.USER)

        removed = links.remove_link("CHK-1", CHECK)

        assert removed.owner_id == "C7"
        assert links.get_link("CHK-1", CHECK) is None

    def test_remove_missing_returns_none(self, links):
        assert links.remove_link("CHK-404", CHECK) is None


def _check(entity_id="CHK-1", amount="1200"):
    return LinkableEntity(
        entity_id=entity_id,
        entity_type=CHECK,
        amount=Decimal(amount),
        counterparty_name="Ahmed Hassan",
        counterparty_phone="0501234567",
        due_date=date(2024, 4, 1),
        reference_id="S-1",
    )


class TestInstrumentRegistry:
    def test_register_and_get(self, instruments):
        stored, created = instruments.register(_check())

        assert created
        assert stored.amount == Decimal("1200")
        assert stored.status == InstrumentStatus.PENDING
        assert instruments.get(CHECK, "CHK-1") == stored

    def test_register_twice_returns_existing(self, instruments):
        instruments.register(_check())
        stored, created = instruments.register(_check(amount="999"))

        assert not created
        assert stored.amount == Decimal("1200")

    def test_require_missing_raises(self, instruments):
        with pytest.raises(InstrumentNotFoundError):
            instruments.require(CHECK, "CHK-404")

    def test_update_status(self, instruments):
        instruments.register(_check())

        updated = instruments.update_status(CHECK, "CHK-1", InstrumentStatus.CASHED)

        assert updated.status == InstrumentStatus.CASHED
        assert instruments.get(CHECK, "CHK-1").status == InstrumentStatus.CASHED

    def test_update_status_missing_raises(self, instruments):
        with pytest.raises(InstrumentNotFoundError):
            instruments.update_status(CHECK, "CHK-404", InstrumentStatus.CASHED)

"""
Unit tests for pure domain values: owners, movement drafts, idempotency
keys, payload hashing and business event parsing.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.events import (
    InvestorTransaction,
    InvestorTransactionKind,
    PaymentStatus,
    SaleEvent,
    TransferEvent,
)
from inventory_kernel.domain.linking import Confidence, EntityType
from inventory_kernel.domain.values import MovementDraft, MovementKind, OwnerRef, OwnerType
from inventory_kernel.exceptions import InvalidEventError, InvalidMovementError
from inventory_kernel.utils.hashing import hash_payload
from inventory_kernel.utils.idempotency import line_idempotency_key, parse_idempotency_key


class TestOwnerRef:
    def test_company_has_no_id(self):
        owner = OwnerRef.company()
        assert owner.is_company
        assert owner.key == "company"

    def test_investor_key(self):
        assert OwnerRef.investor("INV-1").key == "investor:INV-1"

    def test_string_owner_type_is_coerced(self):
        assert OwnerRef("investor", "INV-1") == OwnerRef.investor("INV-1")

    def test_company_with_id_rejected(self):
        with pytest.raises(ValueError):
            OwnerRef(OwnerType.COMPANY, "X")

    def test_investor_without_id_rejected(self):
        with pytest.raises(ValueError):
            OwnerRef(OwnerType.INVESTOR, None)

    def test_unknown_owner_type_rejected(self):
        with pytest.raises(ValueError):
            OwnerRef("partner", "P-1")

    def test_hashable(self):
        assert len({OwnerRef.company(), OwnerRef.company(), OwnerRef.investor("A")}) == 2


def _draft(**overrides):
    fields = dict(
        product_id="P1",
        quantity=-1,
        kind=MovementKind.SALE,
        owner=OwnerRef.company(),
        value_amount=Decimal("80"),
        reference_id="S-1",
        reference_type="sale",
        idempotency_key="sale:S-1:0",
    )
    fields.update(overrides)
    return MovementDraft(**fields)


class TestMovementDraft:
    def test_valid_sale(self):
        draft = _draft()
        draft.validate()
        assert draft.is_outbound

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"quantity": 0}, "non-zero"),
            ({"quantity": 1.5}, "integer"),
            ({"quantity": True}, "integer"),
            ({"value_amount": Decimal("-1")}, "non-negative"),
            ({"value_amount": 5}, "non-negative"),
            ({"idempotency_key": ""}, "idempotency_key"),
            ({"product_id": ""}, "product_id"),
            ({"quantity": 1}, "outbound"),
            ({"owner": OwnerRef.investor("INV-1")}, "cannot belong"),
        ],
    )
    def test_invalid_drafts(self, overrides, message):
        with pytest.raises(InvalidMovementError, match=message):
            _draft(**overrides).validate()

    def test_purchase_must_be_inbound(self):
        with pytest.raises(InvalidMovementError, match="inbound"):
            _draft(kind=MovementKind.PURCHASE, reference_type="purchase").validate()

    def test_transfer_and_return_allow_either_direction(self):
        _draft(kind=MovementKind.TRANSFER, quantity=-2).validate()
        _draft(kind=MovementKind.TRANSFER, quantity=2, owner=OwnerRef.investor("A")).validate()
        _draft(kind=MovementKind.RETURN, quantity=2).validate()

    def test_adjustment_needs_notes(self):
        with pytest.raises(InvalidMovementError, match="notes"):
            _draft(kind=MovementKind.ADJUSTMENT, notes="   ").validate()
        _draft(kind=MovementKind.ADJUSTMENT, notes="count correction").validate()

    def test_only_adjustments_correct(self):
        with pytest.raises(InvalidMovementError, match="only adjustments"):
            _draft(corrects_movement_id=uuid4()).validate()

    def test_payload_hash_ignores_idempotency_key(self):
        a = _draft()
        b = _draft(idempotency_key="sale:S-1:9")
        assert hash_payload(a.payload()) == hash_payload(b.payload())
        assert hash_payload(a.payload()) != hash_payload(_draft(quantity=-2).payload())


class TestIdempotencyKeys:
    def test_format(self):
        assert line_idempotency_key("sale", "S-100", 0) == "sale:S-100:0"
        assert line_idempotency_key("transfer", "TR-1", "out") == "transfer:TR-1:out"

    def test_reference_type_may_not_contain_separator(self):
        with pytest.raises(ValueError):
            line_idempotency_key("sale:x", "S-1", 0)

    def test_parse_takes_line_from_the_right(self):
        assert parse_idempotency_key("sale:ORD:2024:1") == ("sale", "ORD:2024", "1")

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_idempotency_key("nonsense")


class TestConfidence:
    def test_ordering(self):
        assert Confidence.HIGH.at_least(Confidence.MEDIUM)
        assert Confidence.MEDIUM.at_least(Confidence.MEDIUM)
        assert not Confidence.LOW.at_least(Confidence.MEDIUM)
        assert Confidence.HIGH.rank > Confidence.MEDIUM.rank > Confidence.LOW.rank


SALE_PAYLOAD = {
    "id": "S-1",
    "lines": [
        {"product_id": "P1", "quantity": 3, "unit_value": "80"},
        {"product_id": "P2", "quantity": 1, "unit_value": "19.99"},
    ],
    "customer_ref": "C7",
    "payment_status": "paid",
    "payment_method": "cash",
    "instruments": [
        {
            "entity_id": "CHK-1",
            "entity_type": "check",
            "amount": "259.99",
            "counterparty_name": "Ahmed Hassan",
            "due_date": "2024-04-01",
        }
    ],
}


class TestSaleEvent:
    def test_from_dict(self):
        event = SaleEvent.from_dict(SALE_PAYLOAD)

        assert event.customer_ref == "C7"
        assert event.payment_status == PaymentStatus.PAID
        assert event.total_value == Decimal("259.99")
        assert event.lines[1].line_value == Decimal("19.99")
        assert event.instruments[0].entity_type == EntityType.CHECK
        event.validate()

    def test_to_dict_round_trips(self):
        event = SaleEvent.from_dict(SALE_PAYLOAD)
        assert SaleEvent.from_dict(event.to_dict()) == event

    def test_non_numeric_quantity(self):
        bad = {**SALE_PAYLOAD, "lines": [{"product_id": "P1", "quantity": "three"}]}
        with pytest.raises(InvalidEventError):
            SaleEvent.from_dict(bad)

    def test_fractional_quantity(self):
        bad = {**SALE_PAYLOAD, "lines": [{"product_id": "P1", "quantity": "1.5"}]}
        with pytest.raises(InvalidEventError, match="whole number"):
            SaleEvent.from_dict(bad)

    def test_unknown_payment_status(self):
        with pytest.raises(InvalidEventError, match="payment_status"):
            SaleEvent.from_dict({**SALE_PAYLOAD, "payment_status": "maybe"})

    def test_unknown_instrument_type(self):
        bad = {**SALE_PAYLOAD, "instruments": [{"entity_id": "X", "entity_type": "iou", "amount": "1"}]}
        with pytest.raises(InvalidEventError, match="instrument type"):
            SaleEvent.from_dict(bad)

    @pytest.mark.parametrize(
        "payload, message",
        [
            ({**SALE_PAYLOAD, "lines": []}, "at least one line"),
            ({**SALE_PAYLOAD, "lines": [{"product_id": "P1", "quantity": 0}]}, "positive"),
            ({**SALE_PAYLOAD, "lines": [{"product_id": "", "quantity": 1}]}, "product_id"),
            (
                {**SALE_PAYLOAD, "lines": [{"product_id": "P1", "quantity": 1, "unit_value": "-1"}]},
                "unit_value",
            ),
            (
                {**SALE_PAYLOAD, "instruments": SALE_PAYLOAD["instruments"] * 2},
                "duplicate instrument",
            ),
        ],
    )
    def test_validate_rejects(self, payload, message):
        with pytest.raises(InvalidEventError, match=message):
            SaleEvent.from_dict(payload).validate()


class TestInvestorAndTransferEvents:
    def test_investor_transaction_from_dict(self):
        tx = InvestorTransaction.from_dict(
            {
                "transaction_id": "T-1",
                "investor_id": "INV-1",
                "kind": "purchase",
                "product_id": "P1",
                "quantity": 20,
                "value": "5000",
            }
        )
        assert tx.kind == InvestorTransactionKind.PURCHASE
        assert tx.value == Decimal("5000")
        tx.validate()

    def test_investor_transaction_unknown_kind(self):
        with pytest.raises(InvalidEventError, match="unknown kind"):
            InvestorTransaction.from_dict({"transaction_id": "T-1", "kind": "gift", "quantity": 1})

    def test_transfer_defaults_to_company(self):
        event = TransferEvent.from_dict(
            {"id": "TR-1", "product_id": "P1", "quantity": 2, "to_owner_type": "investor",
             "to_owner_id": "INV-1"}
        )
        assert event.from_owner == ("company", None)
        assert event.to_owner == ("investor", "INV-1")

    def test_transfer_to_same_owner_rejected(self):
        event = TransferEvent.from_dict({"id": "TR-1", "product_id": "P1", "quantity": 2})
        with pytest.raises(InvalidEventError, match="same"):
            event.validate()

"""
Tests for IntegrationOrchestrator.

Covers:
- Purchase / sale happy path and the insufficient-stock refusal
- Idempotent resubmission of the same event
- Cash-flow emission for paid trades
- Instrument registration and smart linking after a sale
- Investor purchase / sale with capital enforcement
- Returns, transfers between owners, admin adjustments
- Compensation of partially applied operations
- Transient exhaustion: FAILED, or QUEUED and replayed later
"""

from dataclasses import replace
from decimal import Decimal

import pytest

from inventory_kernel.domain.events import (
    CashFlowDirection,
    InvestorTransaction,
    InvestorTransactionKind,
    PurchaseEvent,
    ReturnEvent,
    SaleEvent,
    TransferEvent,
)
from inventory_kernel.domain.linking import Confidence, EntityType, LinkedBy
from inventory_kernel.domain.values import MovementKind, OwnerRef
from inventory_kernel.exceptions import IdempotencyConflictError
from inventory_kernel.models.pending_operation import PendingStatus
from inventory_kernel.selectors.ownership_selector import OwnershipSelector
from inventory_services.integration_orchestrator import (
    IntegrationOrchestrator,
    OperationStatus,
    OperationType,
)

COMPANY = OwnerRef.company()


def _lines(lines):
    return [{"product_id": p, "quantity": q, "unit_value": str(v)} for p, q, v in lines]


def purchase(event_id, *lines, paid=False):
    return PurchaseEvent.from_dict(
        {
            "id": event_id,
            "lines": _lines(lines),
            "supplier_ref": "S2",
            "payment_status": "paid" if paid else "pending",
            "payment_method": "cash" if paid else None,
        }
    )


def sale(event_id, *lines, paid=False, instruments=()):
    return SaleEvent.from_dict(
        {
            "id": event_id,
            "lines": _lines(lines),
            "customer_ref": "C7",
            "payment_status": "paid" if paid else "pending",
            "payment_method": "cash" if paid else None,
            "instruments": list(instruments),
        }
    )


def investor_tx(tx_id, kind, quantity, value, investor_id="INV-1", product_id="P1"):
    return InvestorTransaction(
        transaction_id=tx_id,
        investor_id=investor_id,
        kind=kind,
        product_id=product_id,
        quantity=quantity,
        value=Decimal(value),
    )


@pytest.fixture
def stocked(orchestrator, add_product):
    """P1 with 10 company units bought at 50."""
    add_product("P1")
    result = orchestrator.process_purchase(purchase("PO-1", ("P1", 10, 50)))
    assert result.success
    return orchestrator


def stock(orchestrator, product_id="P1", owner=COMPANY):
    return orchestrator.ledger.project_stock(product_id, owner)


class TestTradeFlow:
    def test_purchase_then_sale(self, stocked):
        result = stocked.process_sale(sale("S-1", ("P1", 3, 80)))

        assert result.status == OperationStatus.COMPLETED
        assert result.operation_type == OperationType.SALE
        assert result.newly_appended == 1
        movement = result.movements[0]
        assert movement.quantity == -3
        assert movement.kind == MovementKind.SALE
        assert movement.value_amount == Decimal("240")
        assert movement.idempotency_key == "sale:S-1:0"
        assert stock(stocked) == 7

    def test_oversell_is_rejected_without_side_effects(self, stocked):
        stocked.process_sale(sale("S-1", ("P1", 3, 80)))

        result = stocked.process_sale(sale("S-2", ("P1", 8, 80)))

        assert result.status == OperationStatus.REJECTED
        assert result.error_code == "INSUFFICIENT_STOCK"
        assert result.error.available == 7
        assert result.error.requested == 8
        assert result.movements == ()
        assert stock(stocked) == 7
        assert stocked.ledger.movements_for_reference("sale", "S-2") == []

    def test_lines_on_same_product_are_summed_before_writing(self, stocked):
        result = stocked.process_sale(sale("S-1", ("P1", 6, 80), ("P1", 6, 80)))

        assert result.status == OperationStatus.REJECTED
        assert result.error_code == "INSUFFICIENT_STOCK"
        assert stock(stocked) == 10

    def test_resubmission_is_idempotent(self, stocked):
        event = sale("S-1", ("P1", 3, 80), paid=True)

        first = stocked.process_sale(event)
        second = stocked.process_sale(event)

        assert first.newly_appended == 1
        assert second.status == OperationStatus.COMPLETED
        assert second.already_applied
        assert second.movements == first.movements
        assert stock(stocked) == 7
        assert len(stocked.cash_flow.entries) == 1

    def test_invalid_event_rejected(self, orchestrator):
        result = orchestrator.process_sale(SaleEvent(id="S-1", lines=()))

        assert result.status == OperationStatus.REJECTED
        assert result.error_code == "INVALID_EVENT"

    def test_unknown_product_rejected(self, orchestrator):
        result = orchestrator.process_purchase(purchase("PO-9", ("P404", 1, 10)))

        assert result.status == OperationStatus.REJECTED
        assert result.error_code == "PRODUCT_NOT_FOUND"

    def test_logs_operation_lifecycle(self, stocked, captured_logs):
        stocked.process_sale(sale("S-1", ("P1", 3, 80)))

        completed = [r for r in captured_logs() if r["message"] == "operation_completed"]
        assert len(completed) == 1
        assert completed[0]["reference_id"] == "S-1"
        assert completed[0]["operation"] == "sale"


class TestCashFlow:
    def test_paid_sale_emits_inflow(self, stocked, cash_flow):
        result = stocked.process_sale(sale("S-1", ("P1", 3, 80), paid=True))

        entry = result.cash_flow
        assert entry is not None
        assert entry.amount == Decimal("240")
        assert entry.direction == CashFlowDirection.INFLOW
        assert entry.category == "sales"
        assert entry.reference_type == "sale"
        assert entry.payment_method == "cash"
        assert entry.metadata["counterparty_ref"] == "C7"
        assert cash_flow.for_reference("S-1") == (entry,)

    def test_paid_purchase_emits_outflow(self, orchestrator, add_product, cash_flow):
        add_product("P1")

        result = orchestrator.process_purchase(purchase("PO-1", ("P1", 10, 50), paid=True))

        assert result.cash_flow.direction == CashFlowDirection.OUTFLOW
        assert result.cash_flow.amount == Decimal("500")
        assert result.cash_flow.category == "purchases"

    def test_unpaid_sale_emits_nothing(self, stocked, cash_flow):
        result = stocked.process_sale(sale("S-1", ("P1", 3, 80)))

        assert result.cash_flow is None
        assert cash_flow.for_reference("S-1") == ()

    def test_rejected_sale_emits_nothing(self, stocked, cash_flow):
        stocked.process_sale(sale("S-1", ("P1", 30, 80), paid=True))
        assert cash_flow.for_reference("S-1") == ()


AHMED_CHECK = {
    "entity_id": "CHK-1",
    "entity_type": "check",
    "amount": "1200",
    "counterparty_name": "Ahmed Hassan",
    "counterparty_phone": "0501234567",
    "due_date": "2024-04-01",
}


class TestInstrumentLinking:
    def test_sale_check_is_registered_and_linked(self, stocked, add_party, links):
        add_party("C7", "Ahmed Hassan", phone="0501234567", debt="1200")

        result = stocked.process_sale(
            sale("S-1", ("P1", 3, 400), instruments=[AHMED_CHECK])
        )

        assert result.success
        assert result.linking.successful_links == 1
        instrument = stocked.instruments.get(EntityType.CHECK, "CHK-1")
        assert instrument.reference_id == "S-1"
        link = links.get_link("CHK-1", EntityType.CHECK)
        assert link.owner_id == "C7"
        assert link.confidence == Confidence.HIGH
        assert link.linked_by == LinkedBy.SYSTEM

    def test_exact_name_check_is_linked_under_default_config(self, stocked, add_party, links):
        add_party("C8", "Sara Ali")
        sara_check = {
            "entity_id": "CHK-2",
            "entity_type": "check",
            "amount": "300",
            "counterparty_name": "Sara Ali",
        }

        result = stocked.process_sale(sale("S-2", ("P1", 1, 300), instruments=[sara_check]))

        assert stocked.reconciliation.auto_link_floor == Confidence.MEDIUM
        assert result.success
        assert result.linking.successful_links == 1
        link = links.get_link("CHK-2", EntityType.CHECK)
        assert link.owner_id == "C8"
        assert link.confidence == Confidence.MEDIUM
        assert link.linked_by == LinkedBy.SYSTEM

    def test_unmatched_check_goes_to_review_and_sale_still_completes(self, stocked):
        result = stocked.process_sale(
            sale("S-1", ("P1", 3, 400), instruments=[AHMED_CHECK])
        )

        assert result.success
        assert result.linking.successful_links == 0
        assert len(result.linking.needs_review) == 1

    def test_linking_failure_does_not_fail_the_sale(self, stocked, monkeypatch, captured_logs):
        def broken(entities):
            raise RuntimeError("directory unavailable")

        monkeypatch.setattr(stocked.reconciliation, "auto_link", broken)

        result = stocked.process_sale(
            sale("S-1", ("P1", 3, 400), instruments=[AHMED_CHECK])
        )

        assert result.success
        assert result.linking is None
        assert stock(stocked) == 7
        assert any(r["message"] == "instrument_linking_failed" for r in captured_logs())


class TestInvestorOperations:
    @pytest.fixture
    def investor(self, add_product, add_investor):
        add_product("P1")
        add_investor("INV-1", "10000")

    def test_purchase_goes_to_investor_partition(self, orchestrator, investor, db):
        result = orchestrator.process_investor_purchase(
            investor_tx("T-1", InvestorTransactionKind.PURCHASE, 20, "5000")
        )

        assert result.success
        assert result.movements[0].kind == MovementKind.INVESTOR_PURCHASE
        assert stock(orchestrator, owner=OwnerRef.investor("INV-1")) == 20
        assert stock(orchestrator) == 0
        with db.session_scope() as session:
            partition = OwnershipSelector(session).partition_for(OwnerRef.investor("INV-1"))
        assert partition.remaining_capital == Decimal("5000")

    def test_purchase_beyond_capital_rejected(self, orchestrator, investor):
        orchestrator.process_investor_purchase(
            investor_tx("T-1", InvestorTransactionKind.PURCHASE, 20, "5000")
        )

        result = orchestrator.process_investor_purchase(
            investor_tx("T-2", InvestorTransactionKind.PURCHASE, 30, "6000")
        )

        assert result.status == OperationStatus.REJECTED
        assert result.error_code == "INSUFFICIENT_CAPITAL"
        assert stock(orchestrator, owner=OwnerRef.investor("INV-1")) == 20

    def test_sale_returns_capital(self, orchestrator, investor, db):
        orchestrator.process_investor_purchase(
            investor_tx("T-1", InvestorTransactionKind.PURCHASE, 20, "5000")
        )

        result = orchestrator.process_investor_sale(
            investor_tx("T-2", InvestorTransactionKind.SALE, 5, "1500")
        )

        assert result.success
        assert stock(orchestrator, owner=OwnerRef.investor("INV-1")) == 15
        with db.session_scope() as session:
            remaining = OwnershipSelector(session).remaining_capital("INV-1")
        assert remaining == Decimal("6500")

    def test_unknown_investor_rejected(self, orchestrator, investor):
        result = orchestrator.process_investor_purchase(
            investor_tx("T-1", InvestorTransactionKind.PURCHASE, 1, "10", investor_id="INV-404")
        )

        assert result.status == OperationStatus.REJECTED
        assert result.error_code == "INVESTOR_NOT_FOUND"

    def test_wrong_kind_rejected(self, orchestrator, investor):
        result = orchestrator.process_investor_purchase(
            investor_tx("T-1", InvestorTransactionKind.SALE, 1, "10")
        )

        assert result.status == OperationStatus.REJECTED
        assert result.error_code == "INVALID_EVENT"


class TestReturnsTransfersAdjustments:
    def test_return_restocks_company(self, stocked):
        stocked.process_sale(sale("S-1", ("P1", 3, 80)))

        result = stocked.process_return(
            ReturnEvent.from_dict(
                {
                    "id": "R-1",
                    "lines": _lines([("P1", 2, 80)]),
                    "original_sale_id": "S-1",
                    "reason": "damaged box",
                }
            )
        )

        assert result.success
        movement = result.movements[0]
        assert movement.kind == MovementKind.RETURN
        assert movement.quantity == 2
        assert movement.notes == "Return of sale S-1"
        assert stock(stocked) == 9

    def test_transfer_moves_units_between_partitions(self, stocked, add_investor):
        add_investor("INV-1", "1000")
        event = TransferEvent(
            id="TR-1",
            product_id="P1",
            quantity=3,
            value=Decimal("150"),
            from_owner=("company", None),
            to_owner=("investor", "INV-1"),
            notes="investor buy-in",
        )

        result = stocked.process_stock_transfer(event)

        assert result.success
        keys = [m.idempotency_key for m in result.movements]
        assert keys == ["transfer:TR-1:out", "transfer:TR-1:in"]
        assert stock(stocked) == 7
        assert stock(stocked, owner=OwnerRef.investor("INV-1")) == 3
        assert stock(stocked, owner=None) == 10

    def test_transfer_beyond_company_stock_rejected(self, stocked, add_investor):
        add_investor("INV-1", "1000")
        event = TransferEvent(
            id="TR-1",
            product_id="P1",
            quantity=11,
            value=Decimal("0"),
            from_owner=("company", None),
            to_owner=("investor", "INV-1"),
        )

        result = stocked.process_stock_transfer(event)

        assert result.status == OperationStatus.REJECTED
        assert result.error_code == "INSUFFICIENT_STOCK"
        assert stock(stocked, owner=OwnerRef.investor("INV-1")) == 0

    def test_transfer_with_bad_owner_rejected(self, stocked):
        event = TransferEvent(
            id="TR-1",
            product_id="P1",
            quantity=1,
            value=Decimal("0"),
            from_owner=("company", None),
            to_owner=("investor", None),
        )

        result = stocked.process_stock_transfer(event)

        assert result.status == OperationStatus.REJECTED
        assert result.error_code == "INVALID_EVENT"

    def test_adjustment(self, stocked):
        result = stocked.record_adjustment(
            "P1", -2, "Damaged in storage", reference_id="ADJ-1", actor_id="admin"
        )

        assert result.success
        assert result.movements[0].kind == MovementKind.ADJUSTMENT
        assert result.movements[0].notes == "Damaged in storage"
        assert stock(stocked) == 8

    def test_adjustment_correcting_a_movement(self, stocked):
        original = stocked.ledger.get_by_idempotency_key("purchase:PO-1:0")

        result = stocked.record_adjustment(
            "P1",
            -1,
            "PO-1 was 9 units, not 10",
            reference_id="ADJ-2",
            corrects_movement_id=original.id,
        )

        assert result.movements[0].corrects_movement_id == original.id
        assert stock(stocked) == 9

    def test_adjustment_without_notes_rejected(self, stocked):
        result = stocked.record_adjustment("P1", -1, "  ", reference_id="ADJ-3")

        assert result.status == OperationStatus.REJECTED
        assert result.error_code == "INVALID_MOVEMENT"

    def test_adjustment_cannot_drive_company_negative(self, stocked):
        result = stocked.record_adjustment("P1", -11, "Stock count", reference_id="ADJ-4")

        assert result.status == OperationStatus.REJECTED
        assert result.error_code == "INSUFFICIENT_STOCK"
        assert stock(stocked) == 10


class TestCompensation:
    @pytest.fixture
    def two_products(self, stocked, add_product):
        add_product("P2")
        stocked.process_purchase(purchase("PO-2", ("P2", 10, 20)))
        return stocked

    def test_refusal_on_later_line_reverses_earlier_lines(self, two_products, monkeypatch):
        orchestrator = two_products
        real_append = orchestrator.ledger.append

        def append(draft):
            if draft.idempotency_key == "sale:S-1:1":
                raise IdempotencyConflictError(draft.idempotency_key, "a", "b")
            return real_append(draft)

        monkeypatch.setattr(orchestrator.ledger, "append", append)

        result = orchestrator.process_sale(sale("S-1", ("P1", 3, 80), ("P2", 2, 30)))

        assert result.status == OperationStatus.REJECTED
        assert result.error_code == "IDEMPOTENCY_CONFLICT"
        assert len(result.movements) == 1
        assert len(result.compensations) == 1
        reversal = result.compensations[0]
        assert reversal.kind == MovementKind.ADJUSTMENT
        assert reversal.quantity == 3
        assert reversal.corrects_movement_id == result.movements[0].id
        assert reversal.reference_type == "compensation"
        assert stock(orchestrator, "P1") == 10
        assert stock(orchestrator, "P2") == 10

    def test_compensated_operation_cannot_be_resubmitted(self, two_products, monkeypatch):
        orchestrator = two_products
        real_append = orchestrator.ledger.append

        def append(draft):
            if draft.idempotency_key == "sale:S-1:1":
                raise IdempotencyConflictError(draft.idempotency_key, "a", "b")
            return real_append(draft)

        monkeypatch.setattr(orchestrator.ledger, "append", append)
        event = sale("S-1", ("P1", 3, 80), ("P2", 2, 30))
        orchestrator.process_sale(event)
        monkeypatch.undo()

        again = orchestrator.process_sale(event)

        assert again.status == OperationStatus.REJECTED
        assert again.error_code == "INVALID_EVENT"
        assert stock(orchestrator, "P1") == 10


class TestTransientFailures:
    def test_exhaustion_fails_and_keeps_applied_lines(self, stocked, monkeypatch, sleeps):
        real_append = stocked.ledger.append

        def append(draft):
            if draft.reference_id == "S-1" and draft.idempotency_key.endswith(":1"):
                raise ConnectionError("connection reset")
            return real_append(draft)

        monkeypatch.setattr(stocked.ledger, "append", append)

        result = stocked.process_sale(sale("S-1", ("P1", 2, 80), ("P1", 1, 80)))

        assert result.status == OperationStatus.FAILED
        assert isinstance(result.error, ConnectionError)
        assert len(result.movements) == 1
        assert sleeps == pytest.approx([0.1, 0.2])
        assert stock(stocked) == 8

        monkeypatch.undo()
        retried = stocked.process_sale(sale("S-1", ("P1", 2, 80), ("P1", 1, 80)))

        assert retried.success
        assert retried.newly_appended == 1
        assert stock(stocked) == 7

    def test_exhaustion_is_queued_and_replayed(
        self, db, config, clock, cash_flow, sleeps, add_product, monkeypatch
    ):
        queued_config = replace(
            config, orchestrator=replace(config.orchestrator, queue_on_exhaustion=True)
        )
        orchestrator = IntegrationOrchestrator.from_config(
            db, queued_config, clock=clock, cash_flow=cash_flow, sleep=sleeps.append
        )
        add_product("P1")
        orchestrator.process_purchase(purchase("PO-1", ("P1", 10, 50)))

        real_append = orchestrator.ledger.append

        def append(draft):
            if draft.reference_type == "sale":
                raise ConnectionError("connection reset")
            return real_append(draft)

        monkeypatch.setattr(orchestrator.ledger, "append", append)

        result = orchestrator.process_sale(sale("S-1", ("P1", 4, 80)))

        assert result.status == OperationStatus.QUEUED
        assert result.queued_id is not None
        queued = orchestrator.queue.get("sale", "S-1")
        assert queued.status == PendingStatus.QUEUED
        assert stock(orchestrator) == 10

        monkeypatch.undo()
        replayed = orchestrator.replay_pending()

        assert [r.status for r in replayed] == [OperationStatus.COMPLETED]
        assert orchestrator.queue.get("sale", "S-1").status == PendingStatus.COMPLETED
        assert orchestrator.queue.queued() == []
        assert stock(orchestrator) == 6

    def test_replay_of_refused_operation_marks_rejected(self, orchestrator, add_product):
        add_product("P1")
        orchestrator.queue.enqueue("sale", "S-9", sale("S-9", ("P1", 5, 80)).to_dict())
        orchestrator.queue.enqueue("mystery", "M-1", {"id": "M-1"})

        results = orchestrator.replay_pending()

        assert [r.status for r in results] == [OperationStatus.REJECTED]
        assert orchestrator.queue.get("sale", "S-9").status == PendingStatus.REJECTED
        assert orchestrator.queue.get("mystery", "M-1").status == PendingStatus.REJECTED

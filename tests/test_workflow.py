"""State machine tables for purchase requests and service orders."""

from datetime import date

import pytest

from fleet_manager.exceptions import IllegalTransitionError, ValidationError
from fleet_manager.models import PurchaseStatus, ServiceOrderStatus
from fleet_manager.workflow import (
    PURCHASE_WORKFLOW,
    SERVICE_ORDER_WORKFLOW,
    PurchaseEvent,
    ServiceOrderEvent,
)


class TestPurchaseWorkflow:

    def test_fire_follows_table(self):
        assert PURCHASE_WORKFLOW.fire(PurchaseStatus.PENDING, PurchaseEvent.APPROVE) == PurchaseStatus.APPROVED
        assert PURCHASE_WORKFLOW.fire(PurchaseStatus.APPROVED, PurchaseEvent.RECEIVE) == PurchaseStatus.RECEIVED
        assert PURCHASE_WORKFLOW.fire(PurchaseStatus.APPROVED, PurchaseEvent.CANCEL) == PurchaseStatus.CANCELLED

    def test_fire_rejects_unknown_pair(self):
        with pytest.raises(IllegalTransitionError):
            PURCHASE_WORKFLOW.fire(PurchaseStatus.PENDING, PurchaseEvent.RECEIVE)

    def test_allowed_targets(self):
        assert PURCHASE_WORKFLOW.allowed_targets(PurchaseStatus.PENDING) == {
            PurchaseStatus.APPROVED, PurchaseStatus.CANCELLED,
        }
        assert PURCHASE_WORKFLOW.allowed_targets(PurchaseStatus.APPROVED) == {
            PurchaseStatus.RECEIVED, PurchaseStatus.CANCELLED,
        }

    @pytest.mark.parametrize("state", [PurchaseStatus.RECEIVED, PurchaseStatus.CANCELLED])
    def test_terminal_states_are_absorbing(self, state):
        assert PURCHASE_WORKFLOW.is_terminal(state)
        for target in PurchaseStatus:
            if target == state:
                continue
            with pytest.raises(IllegalTransitionError):
                PURCHASE_WORKFLOW.plan(state, target, {
                    "approved_by": "Ana", "approval_date": date.today(),
                    "receiver_name": "Rui", "invoice_number": "NF-1",
                    "delivery_date": date.today(),
                })

    def test_pending_to_received_is_illegal(self):
        with pytest.raises(IllegalTransitionError) as exc_info:
            PURCHASE_WORKFLOW.plan(PurchaseStatus.PENDING, PurchaseStatus.RECEIVED, {
                "receiver_name": "Rui", "invoice_number": "NF-1", "delivery_date": date.today(),
            })
        assert exc_info.value.current == PurchaseStatus.PENDING
        assert exc_info.value.requested == PurchaseStatus.RECEIVED
        assert "pending -> received" in exc_info.value.message

    def test_approve_requires_approver_and_date(self):
        with pytest.raises(ValidationError) as exc_info:
            PURCHASE_WORKFLOW.plan(PurchaseStatus.PENDING, PurchaseStatus.APPROVED, {
                "approved_by": "   ", "approval_date": date.today(),
            })
        assert exc_info.value.field == "approved_by"

        with pytest.raises(ValidationError) as exc_info:
            PURCHASE_WORKFLOW.plan(PurchaseStatus.PENDING, PurchaseStatus.APPROVED, {
                "approved_by": "Ana",
            })
        assert exc_info.value.field == "approval_date"

    def test_approve_plan_carries_supplementary_fields(self):
        today = date.today()
        updates = PURCHASE_WORKFLOW.plan(PurchaseStatus.PENDING, PurchaseStatus.APPROVED, {
            "approved_by": " Ana ", "approval_date": today, "receiver_name": "ignored",
        })
        assert updates == {
            "status": PurchaseStatus.APPROVED, "approved_by": "Ana", "approval_date": today,
        }

    def test_receive_requires_receipt_data(self):
        with pytest.raises(ValidationError) as exc_info:
            PURCHASE_WORKFLOW.plan(PurchaseStatus.APPROVED, PurchaseStatus.RECEIVED, {
                "receiver_name": "Rui", "delivery_date": date.today(),
            })
        assert exc_info.value.field == "invoice_number"

    def test_same_status_is_noop(self):
        assert PURCHASE_WORKFLOW.plan(PurchaseStatus.PENDING, PurchaseStatus.PENDING, {}) is None
        assert PURCHASE_WORKFLOW.plan(PurchaseStatus.RECEIVED, PurchaseStatus.RECEIVED, {}) is None


class TestServiceOrderWorkflow:

    def test_fire_follows_table(self):
        assert SERVICE_ORDER_WORKFLOW.fire(
            ServiceOrderStatus.OPEN, ServiceOrderEvent.START
        ) == ServiceOrderStatus.IN_PROGRESS

    def test_open_can_complete_directly(self):
        updates = SERVICE_ORDER_WORKFLOW.plan(ServiceOrderStatus.OPEN, ServiceOrderStatus.COMPLETED, {
            "validated_by": "Bia", "validation_date": date(2026, 5, 1),
        })
        assert updates["status"] == ServiceOrderStatus.COMPLETED
        assert updates["validated_by"] == "Bia"

    def test_in_progress_cannot_reopen(self):
        with pytest.raises(IllegalTransitionError):
            SERVICE_ORDER_WORKFLOW.plan(ServiceOrderStatus.IN_PROGRESS, ServiceOrderStatus.OPEN, {})

    def test_in_progress_can_be_cancelled(self):
        updates = SERVICE_ORDER_WORKFLOW.plan(
            ServiceOrderStatus.IN_PROGRESS, ServiceOrderStatus.CANCELLED, {}
        )
        assert updates == {"status": ServiceOrderStatus.CANCELLED}

    def test_complete_requires_validation(self):
        with pytest.raises(ValidationError) as exc_info:
            SERVICE_ORDER_WORKFLOW.plan(ServiceOrderStatus.IN_PROGRESS, ServiceOrderStatus.COMPLETED, {
                "validated_by": "Bia",
            })
        assert exc_info.value.field == "validation_date"

    @pytest.mark.parametrize("state", [ServiceOrderStatus.COMPLETED, ServiceOrderStatus.CANCELLED])
    def test_terminal_states_are_absorbing(self, state):
        assert SERVICE_ORDER_WORKFLOW.is_terminal(state)
        for target in ServiceOrderStatus:
            if target == state:
                continue
            with pytest.raises(IllegalTransitionError):
                SERVICE_ORDER_WORKFLOW.plan(state, target, {
                    "validated_by": "Bia", "validation_date": date.today(),
                })

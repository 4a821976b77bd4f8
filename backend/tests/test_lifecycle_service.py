# Overview: Pytest coverage for sale status transitions and lost-race reporting.

import pytest

from retailops.models import SaleCoupon, SaleStatus
from retailops.services import coupon_service, lifecycle_service
from retailops.services.errors import GuardError, NotFoundError
from retailops.services.lifecycle_service import LifecycleError, TransitionOutcome

from conftest import CASHIER_ID, WAREHOUSE_ID, ready_for_picking, start_picking


class TestStateMachine:

    def test_allowed_transitions(self):
        assert lifecycle_service.can_transition(SaleStatus.PENDING, SaleStatus.PICKING)
        assert lifecycle_service.can_transition(SaleStatus.PICKING, SaleStatus.COMPLETED)
        assert lifecycle_service.can_transition(SaleStatus.COMPLETED, SaleStatus.RETURNED)
        assert lifecycle_service.can_transition(SaleStatus.PENDING, SaleStatus.RETURNED)

    def test_forbidden_transitions(self):
        assert not lifecycle_service.can_transition(SaleStatus.PENDING, SaleStatus.COMPLETED)
        assert not lifecycle_service.can_transition(SaleStatus.COMPLETED, SaleStatus.PICKING)
        for target in SaleStatus:
            assert not lifecycle_service.can_transition(SaleStatus.RETURNED, target)

    def test_priors(self):
        assert set(lifecycle_service.priors_of(SaleStatus.RETURNED)) == {
            SaleStatus.PENDING, SaleStatus.PICKING, SaleStatus.COMPLETED,
        }
        assert lifecycle_service.priors_of(SaleStatus.PICKING) == (SaleStatus.PENDING,)

    def test_nothing_leads_back_to_pending(self, db_session, sale):
        with pytest.raises(LifecycleError):
            lifecycle_service.transition(sale.id, SaleStatus.PENDING)


class TestStartPicking:

    def test_refused_until_printed_and_received(self, db_session, sale):
        with pytest.raises(GuardError) as exc:
            lifecycle_service.start_picking(sale.id, WAREHOUSE_ID)
        assert str(exc.value) == "Cannot start: coupon not printed"

        ready_for_picking(sale)
        result = lifecycle_service.start_picking(sale.id, WAREHOUSE_ID)

        assert result.outcome == TransitionOutcome.APPLIED
        assert lifecycle_service.get_sale(sale.id).sale_status == SaleStatus.PICKING

    def test_received_without_print_is_refused(self, db_session, sale):
        coupon_service.receive_by_receipt_number(sale.receipt_number, WAREHOUSE_ID)

        with pytest.raises(GuardError):
            lifecycle_service.start_picking(sale.id, WAREHOUSE_ID)
        assert lifecycle_service.get_sale(sale.id).sale_status == SaleStatus.PENDING

    def test_second_start_is_refused(self, db_session, sale):
        start_picking(sale)

        with pytest.raises(GuardError) as exc:
            lifecycle_service.start_picking(sale.id, WAREHOUSE_ID)
        assert "picking" in str(exc.value)

    def test_coupon_revoked_between_check_and_write(self, db_session, sale, monkeypatch):
        """The conditional write re-checks the coupon, so a late revoke wins."""
        ready_for_picking(sale)
        original = lifecycle_service.transition

        def _revoke_then_transition(sale_id, target, extra_criteria=()):
            db_session.query(SaleCoupon).filter_by(sale_id=sale_id).update(
                {"revoked_at": SaleCoupon.received_at}, synchronize_session=False
            )
            db_session.commit()
            return original(sale_id, target, extra_criteria=extra_criteria)

        monkeypatch.setattr(lifecycle_service, "transition", _revoke_then_transition)

        result = lifecycle_service.start_picking(sale.id, WAREHOUSE_ID)

        assert result.outcome == TransitionOutcome.LOST_RACE
        assert result.ok is False
        assert lifecycle_service.get_sale(sale.id).sale_status == SaleStatus.PENDING

    def test_unknown_sale(self, db_session):
        with pytest.raises(NotFoundError):
            lifecycle_service.start_picking(424242, WAREHOUSE_ID)


class TestLostRace:

    def test_repeated_transition_is_already_applied(self, db_session, sale):
        first = lifecycle_service.mark_returned(sale.id)
        second = lifecycle_service.mark_returned(sale.id)

        assert first.outcome == TransitionOutcome.APPLIED
        assert second.outcome == TransitionOutcome.ALREADY_APPLIED
        assert second.ok

    def test_completion_after_return_is_lost_race(self, db_session, sale):
        start_picking(sale)
        lifecycle_service.mark_returned(sale.id)

        result = lifecycle_service.complete_sale(sale.id)

        assert result.outcome == TransitionOutcome.LOST_RACE
        assert result.status == SaleStatus.RETURNED
        assert result.message == "Cannot move sale from returned to completed"

    def test_returned_is_final(self, db_session, sale):
        lifecycle_service.mark_returned(sale.id)

        result = lifecycle_service.transition(sale.id, SaleStatus.PICKING)

        assert result.outcome == TransitionOutcome.LOST_RACE
        assert lifecycle_service.get_sale(sale.id).sale_status == SaleStatus.RETURNED

    def test_pending_cannot_complete(self, db_session, sale):
        result = lifecycle_service.complete_sale(sale.id)

        assert result.outcome == TransitionOutcome.LOST_RACE
        assert result.status == SaleStatus.PENDING

    def test_result_serializes(self, db_session, sale):
        data = lifecycle_service.mark_returned(sale.id).to_dict()

        assert data == {
            "sale_id": sale.id,
            "target": "returned",
            "outcome": "applied",
            "status": "returned",
            "message": "Sale moved to returned",
        }

    def test_transition_of_unknown_sale(self, db_session):
        with pytest.raises(NotFoundError):
            lifecycle_service.mark_returned(424242)

    def test_cashier_id_is_not_touched(self, db_session, sale):
        lifecycle_service.mark_returned(sale.id)
        assert lifecycle_service.get_sale(sale.id).cashier_id == CASHIER_ID

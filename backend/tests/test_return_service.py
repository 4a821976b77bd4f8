# Overview: Pytest coverage for full-receipt returns, grouped approval and rejection.

import pytest
from sqlalchemy.exc import OperationalError

from retailops.extensions import db
from retailops.models import Product, Return, ReturnStatus, SaleStatus
from retailops.services import entity_store, lifecycle_service, picking_service, return_service
from retailops.services.errors import DuplicateReturnError, GuardError, StoreUnavailableError
from retailops.services.lifecycle_service import TransitionOutcome

from conftest import APPROVER_ID, CASHIER_ID, WAREHOUSE_ID, start_picking


def _complete(sale):
    start_picking(sale)
    for item in sale.items:
        picking_service.set_picked(item.id, True, WAREHOUSE_ID)
    assert lifecycle_service.get_sale(sale.id).sale_status == SaleStatus.COMPLETED


def _active_count(db_session, sale_item_id):
    return (
        db_session.query(Return)
        .filter(Return.sale_item_id == sale_item_id, Return.status.in_(["pending", "approved"]))
        .count()
    )


def _stock(db_session, product_id):
    return db_session.get(Product, product_id, populate_existing=True).quantity_in_stock


class TestInitiate:

    def test_creates_one_pending_row_per_item(self, db_session, sale):
        _complete(sale)

        rows = return_service.initiate_full_return(sale.id, "wrong item", CASHIER_ID)

        assert len(rows) == 2
        assert {r.sale_item_id for r in rows} == {item.id for item in sale.items}
        assert all(r.status == ReturnStatus.PENDING.value for r in rows)
        assert all(r.initiated_by == CASHIER_ID for r in rows)
        assert all(r.reason == "wrong item" for r in rows)
        assert [r.quantity for r in rows] == [2, 3]

    def test_second_initiation_is_refused(self, db_session, sale):
        return_service.initiate_full_return(sale.id, "wrong item", CASHIER_ID)

        with pytest.raises(DuplicateReturnError) as exc:
            return_service.initiate_full_return(sale.id, "again", CASHIER_ID)

        assert exc.value.retryable is False
        assert exc.value.details["sale_item_ids"] == sorted(item.id for item in sale.items)
        assert db_session.query(Return).count() == 2

    def test_concurrent_initiation_is_rejected_not_inserted(self, db_session, sale, monkeypatch):
        """A second initiator that passed the read check loses on the unique index."""
        return_service.initiate_full_return(sale.id, "first", CASHIER_ID)
        monkeypatch.setattr(return_service, "get_active_returns", lambda ids: [])

        with pytest.raises(DuplicateReturnError) as exc:
            return_service.initiate_full_return(sale.id, "second", CASHIER_ID + 1)

        assert exc.value.retryable is True
        for item in sale.items:
            assert _active_count(db_session, item.id) == 1

    def test_retry_after_applied_insert_rechecks_the_guard(self, db_session, sale, monkeypatch):
        """The insert commits but the connection drops before the caller hears back."""
        original = entity_store.insert_rows
        calls = []

        def _insert_then_drop(rows):
            calls.append(1)
            original(rows)
            db.session.commit()
            raise OperationalError("INSERT INTO returns", {}, Exception("server closed the connection"))

        monkeypatch.setattr(entity_store, "insert_rows", _insert_then_drop)

        with pytest.raises(DuplicateReturnError) as exc:
            return_service.initiate_full_return(sale.id, "wrong item", CASHIER_ID)

        assert calls == [1]
        assert exc.value.retryable is False
        for item in sale.items:
            assert _active_count(db_session, item.id) == 1

    def test_returned_sale_is_refused(self, db_session, sale):
        lifecycle_service.mark_returned(sale.id)

        with pytest.raises(GuardError):
            return_service.initiate_full_return(sale.id, "late", CASHIER_ID)

    def test_rejected_rows_do_not_block_a_new_return(self, db_session, sale):
        return_service.initiate_full_return(sale.id, "first", CASHIER_ID)
        return_service.reject_group(sale.id, None, APPROVER_ID)

        rows = return_service.initiate_full_return(sale.id, "second", CASHIER_ID)

        assert len(rows) == 2
        assert db_session.query(Return).count() == 4


class TestApproveGroup:

    def test_approve_returns_sale_and_blocks_picking(self, db_session, sale):
        _complete(sale)
        rows = return_service.initiate_full_return(sale.id, "wrong item", CASHIER_ID)
        ids = [r.id for r in rows]

        result = return_service.approve_group(sale.id, ids, APPROVER_ID)

        assert result.approved_ids == ids
        assert result.warnings == []
        assert result.sale_transition.outcome == TransitionOutcome.APPLIED
        for row in return_service.get_sale_returns(sale.id):
            assert row.status == ReturnStatus.APPROVED.value
            assert row.approved_by == APPROVER_ID
            assert row.approved_at is not None
        assert lifecycle_service.get_sale(sale.id).sale_status == SaleStatus.RETURNED

        with pytest.raises(GuardError):
            lifecycle_service.start_picking(sale.id, WAREHOUSE_ID)

    def test_approval_restores_stock_once(self, db_session, products, sale):
        rows = return_service.initiate_full_return(sale.id, None, CASHIER_ID)
        ids = [r.id for r in rows]
        assert _stock(db_session, products[0].id) == 98

        return_service.approve_group(sale.id, ids, APPROVER_ID)
        return_service.approve_group(sale.id, ids, APPROVER_ID)

        assert _stock(db_session, products[0].id) == 100
        assert _stock(db_session, products[1].id) == 50

    def test_none_approves_all_pending_rows(self, db_session, sale):
        return_service.initiate_full_return(sale.id, None, CASHIER_ID)

        result = return_service.approve_group(sale.id, None, APPROVER_ID)

        assert len(result.approved_ids) == 2

    def test_rejected_row_cannot_be_approved(self, db_session, sale):
        rows = return_service.initiate_full_return(sale.id, None, CASHIER_ID)
        ids = [r.id for r in rows]
        return_service.reject_group(sale.id, ids, APPROVER_ID)

        with pytest.raises(GuardError):
            return_service.approve_group(sale.id, ids, APPROVER_ID)
        assert lifecycle_service.get_sale(sale.id).sale_status == SaleStatus.PENDING

    def test_failed_row_rolls_back_whole_group(self, db_session, sale):
        rows = return_service.initiate_full_return(sale.id, None, CASHIER_ID)
        first, second = [r.id for r in rows]
        return_service.reject_group(sale.id, [second], APPROVER_ID)

        with pytest.raises(GuardError):
            return_service.approve_group(sale.id, [first, second], APPROVER_ID)

        statuses = {r.id: r.status for r in return_service.get_sale_returns(sale.id)}
        assert statuses == {first: "pending", second: "rejected"}

    def test_foreign_ids_are_refused(self, db_session, make_sale):
        sale_a = make_sale()
        sale_b = make_sale()
        rows_b = return_service.initiate_full_return(sale_b.id, None, CASHIER_ID)
        return_service.initiate_full_return(sale_a.id, None, CASHIER_ID)

        with pytest.raises(GuardError) as exc:
            return_service.approve_group(sale_a.id, [rows_b[0].id], APPROVER_ID)
        assert exc.value.details["foreign_ids"] == [rows_b[0].id]

    def test_no_pending_rows(self, db_session, sale):
        with pytest.raises(GuardError):
            return_service.approve_group(sale.id, None, APPROVER_ID)

    def test_failed_sale_transition_is_a_warning(self, db_session, sale, monkeypatch):
        rows = return_service.initiate_full_return(sale.id, None, CASHIER_ID)

        def _unavailable(sale_id):
            raise StoreUnavailableError("Store unavailable")

        monkeypatch.setattr(lifecycle_service, "mark_returned", _unavailable)

        result = return_service.approve_group(sale.id, [r.id for r in rows], APPROVER_ID)

        assert result.sale_transition is None
        assert result.warnings[0].startswith("Approved items but failed to update sale status")
        # Approvals are kept even though the sale was not moved
        assert all(r.status == "approved" for r in return_service.get_sale_returns(sale.id))
        assert lifecycle_service.get_sale(sale.id).sale_status == SaleStatus.PENDING


class TestRejectGroup:

    def test_reject_leaves_sale_untouched(self, db_session, sale):
        _complete(sale)
        rows = return_service.initiate_full_return(sale.id, None, CASHIER_ID)

        result = return_service.reject_group(sale.id, [r.id for r in rows], APPROVER_ID)

        assert result.rejected_count == 2
        assert result.skipped_ids == []
        for row in return_service.get_sale_returns(sale.id):
            assert row.status == "rejected"
            assert row.approved_by == APPROVER_ID
        assert lifecycle_service.get_sale(sale.id).sale_status == SaleStatus.COMPLETED

    def test_rows_already_decided_are_skipped(self, db_session, sale):
        rows = return_service.initiate_full_return(sale.id, None, CASHIER_ID)
        first, second = [r.id for r in rows]
        return_service.approve_group(sale.id, [first], APPROVER_ID)

        result = return_service.reject_group(sale.id, [first, second], APPROVER_ID + 1)

        assert result.rejected_count == 1
        assert result.skipped_ids == [first]
        statuses = {r.id: r.status for r in return_service.get_sale_returns(sale.id)}
        assert statuses == {first: "approved", second: "rejected"}

    def test_repeat_rejection_skips_everything(self, db_session, sale):
        rows = return_service.initiate_full_return(sale.id, None, CASHIER_ID)
        ids = [r.id for r in rows]
        return_service.reject_group(sale.id, ids, APPROVER_ID)

        result = return_service.reject_group(sale.id, ids, APPROVER_ID)

        assert result.rejected_count == 0
        assert result.skipped_ids == ids

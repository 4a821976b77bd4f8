# Overview: Pytest coverage for queue grouping and grouped-by-receipt return views.

from datetime import datetime, timedelta

from retailops.models import (
    Product,
    Return,
    ReturnGroupStatus,
    Sale,
    SaleCoupon,
    SaleItem,
    SaleStatus,
)
from retailops.services import aggregation_service, coupon_service, lifecycle_service, return_service

from conftest import APPROVER_ID, CASHIER_ID, ready_for_picking, start_picking


T0 = datetime(2026, 3, 1, 9, 0, 0)


def _return(rid, sale, status, created_at=T0, product=None, quantity=1, approved_at=None, reason=None):
    item = SaleItem(id=rid * 10, quantity=quantity, unit_price_cents=100, product=product)
    return Return(
        id=rid,
        sale_id=sale.id if sale is not None else 99,
        sale=sale,
        sale_item=item,
        quantity=quantity,
        status=status,
        initiated_by=CASHIER_ID,
        created_at=created_at,
        approved_at=approved_at,
        reason=reason,
    )


class TestGroupStatus:

    def test_any_pending_is_pending(self):
        assert aggregation_service.group_status(["approved", "pending"]) == ReturnGroupStatus.PENDING

    def test_all_approved(self):
        assert aggregation_service.group_status(["approved", "approved"]) == ReturnGroupStatus.APPROVED

    def test_all_rejected(self):
        assert aggregation_service.group_status(["rejected"]) == ReturnGroupStatus.REJECTED

    def test_decided_but_different_is_mixed(self):
        assert aggregation_service.group_status(["approved", "rejected"]) == ReturnGroupStatus.MIXED


class TestGroupReturns:

    def test_groups_by_sale_newest_first(self):
        older = Sale(id=1, receipt_number="RCP-20260301-0001", customer_name="Alice")
        newer = Sale(id=2, receipt_number="RCP-20260301-0002", customer_name="Bob")
        cement = Product(name="Cement", sku="CEM")
        rows = [
            _return(1, older, "pending", T0, cement, quantity=2, reason="damaged"),
            _return(2, older, "pending", T0 + timedelta(seconds=1), cement, quantity=1),
            _return(3, newer, "approved", T0 + timedelta(hours=1)),
        ]

        groups = aggregation_service.group_returns(rows)

        assert [g.sale_id for g in groups] == [2, 1]
        alice = groups[1]
        assert alice.receipt_number == "RCP-20260301-0001"
        assert alice.status == ReturnGroupStatus.PENDING
        assert alice.return_ids == [1, 2]
        assert alice.created_at == T0
        assert alice.total_quantity == 3
        assert [line.to_dict() for line in alice.items] == [{"name": "Cement", "sku": "CEM", "quantity": 3}]
        assert alice.reasons == ["damaged"]

    def test_missing_relations_use_placeholders(self):
        rows = [_return(1, None, "rejected", product=None)]

        group = aggregation_service.group_returns(rows)[0]

        assert group.receipt_number == "#99"
        assert group.customer_name == aggregation_service.NO_VALUE
        assert group.items[0].name == aggregation_service.UNKNOWN_ITEM
        assert group.status == ReturnGroupStatus.REJECTED

    def test_to_dict(self):
        sale = Sale(id=7, receipt_number="RCP-20260301-0007", customer_name=None)
        approved_at = T0 + timedelta(minutes=5)
        group = aggregation_service.group_returns([
            _return(1, sale, "approved", approved_at=approved_at),
        ])[0]

        data = group.to_dict()

        assert data["status"] == "approved"
        assert data["items_count"] == 1
        assert data["approved_at"] == "2026-03-01T09:05:00Z"
        assert data["customer_name"] == aggregation_service.NO_VALUE


class TestCouponQueues:

    def _coupon(self, cid, status, received=True, revoked=False):
        sale = Sale(id=cid, receipt_number=f"R-{cid}", status=status)
        return SaleCoupon(
            id=cid,
            sale_id=cid,
            sale=sale,
            issued_at=T0,
            printed_at=T0,
            received_at=T0 + timedelta(minutes=cid) if received else None,
            revoked_at=T0 if revoked else None,
        )

    def test_queues_by_sale_status(self):
        coupons = [
            self._coupon(1, "pending"),
            self._coupon(2, "picking"),
            self._coupon(3, "completed"),
            self._coupon(4, "pending"),
            self._coupon(5, "returned"),
            self._coupon(6, "pending", received=False),
            self._coupon(7, "pending", revoked=True),
        ]

        queues = aggregation_service.group_coupon_queues(coupons)

        assert [c.id for c in queues[SaleStatus.PENDING]] == [4, 1]
        assert [c.id for c in queues[SaleStatus.PICKING]] == [2]
        assert [c.id for c in queues[SaleStatus.COMPLETED]] == [3]
        assert SaleStatus.RETURNED not in queues

    def test_print_board_split(self):
        unprinted = SaleCoupon(id=1, issued_at=T0, printed_at=None)
        printed = SaleCoupon(id=2, issued_at=T0 + timedelta(minutes=1), printed_at=T0)
        revoked = SaleCoupon(id=3, issued_at=T0, revoked_at=T0)

        board = aggregation_service.split_print_board([unprinted, printed, revoked])

        assert [c.id for c in board["unprinted"]] == [1]
        assert [c.id for c in board["printed"]] == [2]


class TestLoaders:

    def test_warehouse_queues_follow_sale_status(self, db_session, make_sale):
        waiting = make_sale()
        picking = make_sale()
        not_received = make_sale()
        ready_for_picking(waiting)
        start_picking(picking)

        queues = aggregation_service.load_warehouse_queues()

        assert [e["sale_id"] for e in queues["pending"]] == [waiting.id]
        assert queues["pending"][0]["can_start_picking"] is True
        assert [e["sale_id"] for e in queues["picking"]] == [picking.id]
        assert queues["completed"] == []
        assert not_received.id not in [e["sale_id"] for entries in queues.values() for e in entries]

    def test_print_board(self, db_session, branch, make_sale):
        first = make_sale()
        second = make_sale()
        coupon_service.mark_printed(coupon_service.get_active_coupon(first.id).id, CASHIER_ID)

        board = aggregation_service.load_print_board(branch.id)

        assert [c["sale_id"] for c in board["printed"]] == [first.id]
        assert [c["sale_id"] for c in board["unprinted"]] == [second.id]
        assert board["unprinted"][0]["receipt_number"] == second.receipt_number

    def test_pending_and_approved_today(self, db_session, make_sale):
        pending_sale = make_sale()
        approved_sale = make_sale()
        return_service.initiate_full_return(pending_sale.id, "wrong size", CASHIER_ID)
        return_service.initiate_full_return(approved_sale.id, None, CASHIER_ID)
        return_service.approve_group(approved_sale.id, None, APPROVER_ID)

        pending = aggregation_service.load_pending_return_groups()
        approved = aggregation_service.load_approved_today()

        assert [g.sale_id for g in pending] == [pending_sale.id]
        assert pending[0].initiated_by == CASHIER_ID
        assert pending[0].reasons == ["wrong size"]
        assert [g.sale_id for g in approved] == [approved_sale.id]
        assert approved[0].approved_by == APPROVER_ID
        assert approved[0].status == ReturnGroupStatus.APPROVED

    def test_returned_items_report_includes_rejected(self, db_session, make_sale):
        rejected_sale = make_sale()
        return_service.initiate_full_return(rejected_sale.id, None, CASHIER_ID)
        return_service.reject_group(rejected_sale.id, None, APPROVER_ID)

        groups = aggregation_service.load_returned_items()

        assert len(groups) == 1
        assert groups[0].status == ReturnGroupStatus.REJECTED
        assert {line.name for line in groups[0].items} == {"Cement 50kg", "Rebar 12mm"}

    def test_returned_sale_leaves_warehouse_queue(self, db_session, sale):
        ready_for_picking(sale)
        lifecycle_service.mark_returned(sale.id)

        queues = aggregation_service.load_warehouse_queues()

        assert all(entries == [] for entries in queues.values())

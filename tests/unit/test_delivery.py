"""
Unit tests for the delivery sub-lifecycle.
"""
from datetime import datetime

import pytest

from models.message import NegotiationMessage
from models.order import DeliveryReceipt, Order
from services.delivery import DeliveryTracker, can_advance, status_for_stage
from services.errors import InvalidTransition, NotAuthorized, ValidationError
from services.ledger import OrderLedger
from services.negotiation import NegotiationService


@pytest.fixture
def accepted_order(db, admin, vendor, sent_order):
    message, _ = NegotiationService(db).submit_quotation(vendor, sent_order.id, {"amount": 38000})
    order, _ = NegotiationService(db).accept_quotation(admin, sent_order.id, message.id)
    return order


@pytest.mark.unit
class TestStageRules:
    """Tests for can_advance and status_for_stage."""

    @pytest.mark.parametrize("current,new", [
        ("not_started", "preparing"),
        ("not_started", "dispatched"),
        ("packed", "in_transit"),
        ("dispatched", "dispatched"),
        ("in_transit", "partially_delivered"),
        ("out_for_delivery", "partially_delivered"),
        ("partially_delivered", "partially_delivered"),
        ("partially_delivered", "delivered"),
        ("out_for_delivery", "delivered"),
    ])
    def test_allowed(self, current, new):
        """Test forward moves and the partial branch are allowed."""
        assert can_advance(current, new)

    @pytest.mark.parametrize("current,new", [
        ("dispatched", "preparing"),
        ("delivered", "in_transit"),
        ("packed", "partially_delivered"),
        ("partially_delivered", "out_for_delivery"),
        ("in_transit", "not_started"),
    ])
    def test_refused(self, current, new):
        """Test regressions and early partial deliveries are refused."""
        assert not can_advance(current, new)

    def test_status_follows_stage(self):
        """Test the order status implied by each stage."""
        assert status_for_stage("accepted", "not_started") == "accepted"
        assert status_for_stage("accepted", "preparing") == "in_progress"
        assert status_for_stage("in_progress", "in_transit") == "in_progress"
        assert status_for_stage("in_progress", "partially_delivered") == "partially_delivered"
        assert status_for_stage("partially_delivered", "delivered") == "completed"


@pytest.mark.unit
class TestDeliveryTracker:
    """Tests for DeliveryTracker.update_delivery_status."""

    def test_dispatch_then_regress_fails(self, db, vendor, accepted_order):
        """Test a dispatched order cannot move back to preparing."""
        tracker = DeliveryTracker(db)
        order = tracker.update_delivery_status(
            vendor, accepted_order.id, "dispatched", tracking_number="TRK-1", carrier="BlueDart",
        )
        assert order.delivery_stage == "dispatched"
        assert order.status == "in_progress"
        version = order.version

        with pytest.raises(InvalidTransition) as exc:
            DeliveryTracker(db).update_delivery_status(vendor, accepted_order.id, "preparing")
        assert exc.value.to_dict()["currentStage"] == "dispatched"

        db.expire_all()
        stored = db.get(Order, accepted_order.id)
        assert stored.delivery_stage == "dispatched"
        assert stored.version == version
        assert stored.tracking_number == "TRK-1"

    def test_delivered_completes_order(self, db, vendor, accepted_order):
        """Test reaching delivered completes the order in the same write."""
        tracker = DeliveryTracker(db)
        tracker.update_delivery_status(vendor, accepted_order.id, "in_transit")
        order = tracker.update_delivery_status(vendor, accepted_order.id, "delivered", notes="Signed by site engineer")

        assert order.status == "completed"
        assert order.delivered_at is not None
        assert order.completed_at is not None
        assert order.delivery_notes == "Signed by site engineer"
        assert order.final_amount == 38000

        events = [
            row[0]
            for row in db.query(NegotiationMessage.system_event)
            .filter(NegotiationMessage.order_id == order.id)
            .order_by(NegotiationMessage.id)
            .all()
        ]
        assert events[-2:] == ["delivery_update", "order_completed"]

        with pytest.raises(InvalidTransition):
            DeliveryTracker(db).update_delivery_status(vendor, accepted_order.id, "delivered")

    def test_partial_branch(self, db, vendor, accepted_order):
        """Test a partial delivery sets the matching order status."""
        tracker = DeliveryTracker(db)
        tracker.update_delivery_status(vendor, accepted_order.id, "in_transit")
        order = tracker.update_delivery_status(vendor, accepted_order.id, "partially_delivered")
        assert order.status == "partially_delivered"
        assert order.delivery_stage == "partially_delivered"

        order = tracker.update_delivery_status(vendor, accepted_order.id, "delivered")
        assert order.status == "completed"

    def test_same_stage_amends_details(self, db, vendor, accepted_order):
        """Test repeating a stage updates tracking details and keeps the rest."""
        tracker = DeliveryTracker(db)
        tracker.update_delivery_status(vendor, accepted_order.id, "dispatched", carrier="BlueDart")
        arrival = datetime(2030, 1, 5, 10, 0)
        order = tracker.update_delivery_status(
            vendor, accepted_order.id, "dispatched", tracking_number="TRK-9", expected_arrival=arrival,
        )
        assert order.carrier == "BlueDart"
        assert order.tracking_number == "TRK-9"
        assert order.expected_arrival == arrival

    def test_events_target_order_and_vendor_rooms(self, db, vendor, accepted_order):
        """Test the delivery message and order update are published."""
        tracker = DeliveryTracker(db)
        tracker.update_delivery_status(vendor, accepted_order.id, "preparing")

        names = [e.name for e in tracker.events]
        assert names == ["newMessage", "orderUpdated"]
        update = tracker.events[-1]
        assert update.rooms == (f"order_{accepted_order.id}", f"vendor_{vendor.id}")
        assert update.data["deliveryTracking"]["stage"] == "preparing"
        assert tracker.events[0].data["payload"]["previousStage"] == "not_started"

    def test_only_assigned_vendor_updates(self, db, admin, other_vendor, accepted_order):
        """Test admins and foreign vendors cannot report delivery."""
        for actor in (admin, other_vendor):
            with pytest.raises(NotAuthorized):
                DeliveryTracker(db).update_delivery_status(actor, accepted_order.id, "preparing")

    def test_refused_before_acceptance(self, db, vendor, sent_order):
        """Test delivery cannot start while the order is still negotiable."""
        with pytest.raises(InvalidTransition) as exc:
            DeliveryTracker(db).update_delivery_status(vendor, sent_order.id, "preparing")
        assert exc.value.current_status == "sent"

    def test_refused_after_cancel(self, db, admin, vendor, accepted_order):
        """Test a cancelled order no longer tracks delivery."""
        OrderLedger(db).cancel_order(admin, accepted_order.id)
        with pytest.raises(InvalidTransition):
            DeliveryTracker(db).update_delivery_status(vendor, accepted_order.id, "preparing")

    def test_tracking_readable_by_client(self, db, client_user, other_vendor, accepted_order):
        """Test tracking follows the order read rules."""
        assert DeliveryTracker(db).get_tracking(client_user, accepted_order.id).delivery_stage == "not_started"
        with pytest.raises(NotAuthorized):
            DeliveryTracker(db).get_tracking(other_vendor, accepted_order.id)


@pytest.mark.unit
class TestDeliveryReceipts:
    """Tests for buyer-side goods receipts."""

    def test_receipt_accumulates_quantities(self, db, admin, accepted_order):
        """Test received quantities add up per item across receipts."""
        cement, steel = accepted_order.items
        tracker = DeliveryTracker(db)
        tracker.record_receipt(admin, accepted_order.id, [{"item_id": cement.id, "quantity": 120}], delivered_by="Truck 7")
        receipt = tracker.record_receipt(admin, accepted_order.id, [
            {"item_id": cement.id, "quantity": 50},
            {"item_id": cement.id, "quantity": 30},
            {"item_id": steel.id, "quantity": 1},
        ])

        assert receipt.lines == [
            {"item_id": cement.id, "name": "Cement (OPC 53)", "quantity": 80},
            {"item_id": steel.id, "name": "TMT bar 12mm", "quantity": 1},
        ]
        db.expire_all()
        order = db.get(Order, accepted_order.id)
        assert [it.received_quantity for it in order.items] == [200, 1]
        assert [r.id for r in tracker.list_receipts(admin, order.id)] == [r.id for r in db.query(DeliveryReceipt).order_by(DeliveryReceipt.id)]

    def test_receipt_leaves_status_and_stage(self, db, admin, accepted_order):
        """Test receiving goods never moves the order lifecycle."""
        version = accepted_order.version
        item = accepted_order.items[0]
        tracker = DeliveryTracker(db)
        tracker.record_receipt(admin, accepted_order.id, [{"item_id": item.id, "quantity": 200}])

        db.expire_all()
        order = db.get(Order, accepted_order.id)
        assert order.status == "accepted"
        assert order.delivery_stage == "not_started"
        assert order.version == version + 1

        assert [e.name for e in tracker.events] == ["newMessage", "orderUpdated"]
        payload = tracker.events[0].data["payload"]
        assert payload["items"] == [{
            "itemId": item.id, "name": "Cement (OPC 53)", "quantity": 200, "receivedTotal": 200, "ordered": 200,
        }]
        entry = db.query(NegotiationMessage).filter(NegotiationMessage.system_event == "delivery_received").one()
        assert entry.message_type == "delivery"
        assert entry.sender_id == admin.id

    def test_receipt_after_completion(self, db, admin, vendor, accepted_order):
        """Test goods can still be booked in once the vendor reports delivery."""
        DeliveryTracker(db).update_delivery_status(vendor, accepted_order.id, "delivered")
        item = accepted_order.items[1]
        receipt = DeliveryTracker(db).record_receipt(admin, accepted_order.id, [{"item_id": item.id, "quantity": 2}])
        assert receipt.order_id == accepted_order.id
        db.expire_all()
        assert db.get(Order, accepted_order.id).status == "completed"

    def test_receipt_refused_before_acceptance(self, db, admin, sent_order):
        """Test nothing can be received on a negotiable order."""
        item = sent_order.items[0]
        with pytest.raises(InvalidTransition) as exc:
            DeliveryTracker(db).record_receipt(admin, sent_order.id, [{"item_id": item.id, "quantity": 1}])
        assert exc.value.current_status == "sent"
        assert db.query(DeliveryReceipt).count() == 0

    def test_only_buyer_side_records(self, db, vendor, client_user, accepted_order):
        """Test vendors and clients cannot confirm receipt."""
        item = accepted_order.items[0]
        for actor in (vendor, client_user):
            with pytest.raises(NotAuthorized):
                DeliveryTracker(db).record_receipt(actor, accepted_order.id, [{"item_id": item.id, "quantity": 1}])

    @pytest.mark.parametrize("quantity", [0, -3, float("nan"), float("inf")])
    def test_bad_quantities(self, db, admin, accepted_order, quantity):
        """Test non-positive and non-finite quantities are refused."""
        item = accepted_order.items[0]
        with pytest.raises(ValidationError):
            DeliveryTracker(db).record_receipt(admin, accepted_order.id, [{"item_id": item.id, "quantity": quantity}])

    def test_foreign_item(self, db, admin, vendor, project, order_items, accepted_order):
        """Test lines must reference the order's own items."""
        other = OrderLedger(db).create_order(admin, title="Roof", project_id=project.id, vendor_id=vendor.id, items=order_items)
        foreign = other.items[0]
        with pytest.raises(ValidationError):
            DeliveryTracker(db).record_receipt(admin, accepted_order.id, [{"item_id": foreign.id, "quantity": 1}])

"""
Unit tests for quotation rounds, acceptance and chat.
"""
from datetime import timedelta

import pytest

from models.invoice import Invoice
from models.message import NegotiationMessage, Quotation
from models.order import Order
from models.users import User
from services.errors import (
    AlreadyAccepted,
    AlreadyRejected,
    InvalidTransition,
    NotAuthorized,
    NotFound,
    QuotationExpired,
    ValidationError,
)
from services.ledger import OrderLedger
from services.negotiation import NegotiationService, price_quotation
from utils.clock import utcnow


def quotation_status(db, message_id):
    db.expire_all()
    return db.query(Quotation).filter(Quotation.message_id == message_id).one().status


def invoice_count(db, order_id):
    return db.query(Invoice).filter(Invoice.order_id == order_id).count()


@pytest.mark.unit
class TestPriceQuotation:
    """Tests for price_quotation."""

    def test_amount_only(self):
        """Test a bare amount is accepted and rounded."""
        assert price_quotation(45000.004, []) == (45000.0, [])

    def test_items_define_the_amount(self):
        """Test line totals are computed and summed when no amount is given."""
        amount, lines = price_quotation(None, [
            {"name": "Cement", "quantity": 200, "unit": "bag", "unit_price": 185.0},
            {"name": "TMT bar", "quantity": 2, "unit": "tonne", "unit_price": 15500.0},
        ])
        assert amount == 68000.0
        assert [line["total"] for line in lines] == [37000.0, 31000.0]

    def test_amount_must_match_items(self):
        """Test a stated amount that disagrees with the lines is refused."""
        with pytest.raises(ValidationError) as exc:
            price_quotation(100.0, [{"name": "Sand", "quantity": 3, "unit_price": 40.0}])
        assert exc.value.state["itemsTotal"] == 120.0

    def test_small_rounding_difference_is_tolerated(self):
        """Test differences within a cent are settled to the items total."""
        amount, _ = price_quotation(120.005, [{"name": "Sand", "quantity": 3, "unit_price": 40.0}])
        assert amount == 120.0

    @pytest.mark.parametrize("amount", [0, -5.0])
    def test_amount_must_be_positive(self, amount):
        """Test zero and negative quotations are refused."""
        with pytest.raises(ValidationError):
            price_quotation(amount, [])

    @pytest.mark.parametrize("amount", [float("nan"), float("inf"), float("-inf")])
    def test_amount_must_be_finite(self, amount):
        """Test NaN and infinite amounts are refused."""
        with pytest.raises(ValidationError):
            price_quotation(amount, [])

    def test_amount_or_items_required(self):
        """Test an empty quotation is refused."""
        with pytest.raises(ValidationError):
            price_quotation(None, [])


@pytest.mark.unit
class TestQuotationRounds:
    """Tests for submitting, rejecting and accepting quotations."""

    def test_counter_offer_then_accept(self, db, admin, vendor, sent_order):
        """Test a rejected first quotation followed by an accepted counter offer."""
        svc = NegotiationService(db)
        first, superseded = svc.submit_quotation(vendor, sent_order.id, {"amount": 45000})
        assert superseded == []
        assert db.get(Order, sent_order.id).status == "in_negotiation"

        svc.reject_quotation(admin, sent_order.id, first.id, reason="too high")
        assert quotation_status(db, first.id) == "rejected"
        assert db.get(Order, sent_order.id).status == "in_negotiation"

        second, _ = NegotiationService(db).submit_quotation(
            vendor, sent_order.id, {"amount": 38000, "in_response_to": first.id}
        )
        assert second.quotation.in_response_to_id == first.id

        order, invoice = NegotiationService(db).accept_quotation(admin, sent_order.id, second.id)

        assert order.status == "accepted"
        assert order.final_amount == 38000
        assert order.chat_closed is True
        assert order.accepted_message_id == second.id
        assert invoice.total_amount == 38000
        assert invoice.amount_due == 38000
        assert invoice.full_number == "INV-00001"
        assert invoice_count(db, sent_order.id) == 1
        assert quotation_status(db, first.id) == "rejected"
        assert quotation_status(db, second.id) == "accepted"

    def test_new_quotation_supersedes_pending_one(self, db, vendor, sent_order):
        """Test only the newest quotation stays pending."""
        svc = NegotiationService(db)
        first, _ = svc.submit_quotation(vendor, sent_order.id, {"amount": 45000})
        second, superseded = svc.submit_quotation(vendor, sent_order.id, {"amount": 44000})

        assert superseded == [first.id]
        assert quotation_status(db, first.id) == "negotiated"
        assert quotation_status(db, second.id) == "pending"
        submitted = [e for e in svc.events if e.name == "quotationSubmitted"][-1]
        assert submitted.data["supersededIds"] == [first.id]

    def test_accept_emits_events_after_commit(self, db, admin, vendor, sent_order):
        """Test acceptance publishes the log entries, the decision and the order update."""
        message, _ = NegotiationService(db).submit_quotation(vendor, sent_order.id, {"amount": 5000})
        svc = NegotiationService(db)
        order, invoice = svc.accept_quotation(admin, sent_order.id, message.id)

        names = [e.name for e in svc.events]
        assert names == ["newMessage", "newMessage", "quotationAccepted", "orderUpdated"]
        accepted = svc.events[2]
        assert accepted.data == {
            "orderId": order.id,
            "messageId": message.id,
            "invoiceId": invoice.id,
            "invoiceNumber": invoice.full_number,
        }
        assert svc.events[-1].data["finalAmount"] == 5000
        assert svc.events[1].data["type"] == "invoice"

    def test_accept_with_terms(self, db, admin, vendor, sent_order):
        """Test tax and discount from the accept request reach the invoice."""
        message, _ = NegotiationService(db).submit_quotation(vendor, sent_order.id, {"amount": 1000})
        _, invoice = NegotiationService(db).accept_quotation(
            admin, sent_order.id, message.id, {"tax_rate": 18, "discount": 80, "due_days": 15},
        )
        assert invoice.tax_amount == 180.0
        assert invoice.total_amount == 1100.0
        assert (invoice.due_date - invoice.created_at).days == 15

    def test_double_accept_is_already_accepted(self, db, admin, vendor, sent_order):
        """Test accepting twice fails and leaves one invoice."""
        message, _ = NegotiationService(db).submit_quotation(vendor, sent_order.id, {"amount": 5000})
        NegotiationService(db).accept_quotation(admin, sent_order.id, message.id)

        with pytest.raises(AlreadyAccepted) as exc:
            NegotiationService(db).accept_quotation(admin, sent_order.id, message.id)

        body = exc.value.to_dict()
        assert body["error"] == "already_accepted"
        assert body["currentStatus"] == "accepted"
        assert body["quotationStatus"] == "accepted"
        assert invoice_count(db, sent_order.id) == 1

    def test_reject_after_accept_changes_nothing(self, db, admin, vendor, sent_order):
        """Test rejecting an accepted quotation is an invalid transition."""
        message, _ = NegotiationService(db).submit_quotation(vendor, sent_order.id, {"amount": 5000})
        NegotiationService(db).accept_quotation(admin, sent_order.id, message.id)
        version = db.get(Order, sent_order.id).version

        svc = NegotiationService(db)
        with pytest.raises(InvalidTransition) as exc:
            svc.reject_quotation(admin, sent_order.id, message.id, reason="changed my mind")

        assert not isinstance(exc.value, AlreadyAccepted)
        assert svc.events == []
        db.expire_all()
        order = db.get(Order, sent_order.id)
        assert order.status == "accepted"
        assert order.final_amount == 5000
        assert order.version == version
        assert quotation_status(db, message.id) == "accepted"

    def test_reject_twice_is_already_rejected(self, db, admin, vendor, sent_order):
        """Test rejecting a rejected quotation reports AlreadyRejected."""
        message, _ = NegotiationService(db).submit_quotation(vendor, sent_order.id, {"amount": 5000})
        NegotiationService(db).reject_quotation(admin, sent_order.id, message.id)
        with pytest.raises(AlreadyRejected):
            NegotiationService(db).reject_quotation(admin, sent_order.id, message.id)

    def test_superseded_quotation_cannot_be_accepted(self, db, admin, vendor, sent_order):
        """Test a negotiated quotation is no longer actionable."""
        svc = NegotiationService(db)
        first, _ = svc.submit_quotation(vendor, sent_order.id, {"amount": 45000})
        svc.submit_quotation(vendor, sent_order.id, {"amount": 44000})

        with pytest.raises(InvalidTransition) as exc:
            NegotiationService(db).accept_quotation(admin, sent_order.id, first.id)
        assert exc.value.quotation_status == "negotiated"

    def test_expired_quotation_is_marked_and_refused(self, db, admin, vendor, sent_order):
        """Test a lapsed quotation becomes expired on the first decision attempt."""
        message, _ = NegotiationService(db).submit_quotation(
            vendor, sent_order.id, {"amount": 5000, "valid_until": utcnow() + timedelta(days=1)}
        )
        quotation = db.query(Quotation).filter(Quotation.message_id == message.id).one()
        quotation.valid_until = utcnow() - timedelta(minutes=5)
        db.commit()

        svc = NegotiationService(db)
        with pytest.raises(QuotationExpired) as exc:
            svc.accept_quotation(admin, sent_order.id, message.id)

        assert exc.value.to_dict()["error"] == "quotation_expired"
        assert svc.events == []
        assert quotation_status(db, message.id) == "expired"
        assert db.get(Order, sent_order.id).status == "in_negotiation"
        assert invoice_count(db, sent_order.id) == 0

        with pytest.raises(InvalidTransition):
            NegotiationService(db).reject_quotation(admin, sent_order.id, message.id)

    def test_valid_until_must_be_in_future(self, db, vendor, sent_order):
        """Test quotations cannot be born expired."""
        with pytest.raises(ValidationError):
            NegotiationService(db).submit_quotation(
                vendor, sent_order.id, {"amount": 5000, "valid_until": utcnow() - timedelta(hours=1)}
            )

    def test_in_response_to_must_belong_to_order(self, db, admin, vendor, project, order_items, sent_order):
        """Test a counter offer cannot reference another order's quotation."""
        ledger = OrderLedger(db)
        other = ledger.create_order(
            admin, title="Roofing", project_id=project.id, vendor_id=vendor.id, items=order_items,
        )
        ledger.send_order(admin, other.id)
        foreign, _ = NegotiationService(db).submit_quotation(vendor, other.id, {"amount": 100})

        with pytest.raises(NotFound):
            NegotiationService(db).submit_quotation(
                vendor, sent_order.id, {"amount": 200, "in_response_to": foreign.id}
            )

    def test_only_assigned_vendor_quotes(self, db, admin, other_vendor, sent_order):
        """Test admins and foreign vendors cannot submit quotations."""
        for actor in (admin, other_vendor):
            with pytest.raises(NotAuthorized):
                NegotiationService(db).submit_quotation(actor, sent_order.id, {"amount": 100})

    def test_only_admin_side_decides(self, db, vendor, client_user, sent_order):
        """Test vendors and clients cannot accept quotations."""
        message, _ = NegotiationService(db).submit_quotation(vendor, sent_order.id, {"amount": 100})
        for actor in (vendor, client_user):
            with pytest.raises(NotAuthorized):
                NegotiationService(db).accept_quotation(actor, sent_order.id, message.id)

    def test_no_quotations_on_draft(self, db, vendor, draft_order):
        """Test a draft order does not accept quotations."""
        with pytest.raises(InvalidTransition) as exc:
            NegotiationService(db).submit_quotation(vendor, draft_order.id, {"amount": 100})
        assert exc.value.current_status == "draft"

    def test_no_quotations_after_acceptance(self, db, admin, vendor, sent_order):
        """Test the closed chat refuses new quotations."""
        message, _ = NegotiationService(db).submit_quotation(vendor, sent_order.id, {"amount": 100})
        NegotiationService(db).accept_quotation(admin, sent_order.id, message.id)
        with pytest.raises(InvalidTransition):
            NegotiationService(db).submit_quotation(vendor, sent_order.id, {"amount": 90})

    def test_unknown_quotation(self, db, admin, sent_order):
        """Test deciding on a missing quotation is NotFound."""
        with pytest.raises(NotFound):
            NegotiationService(db).accept_quotation(admin, sent_order.id, 4242)


@pytest.mark.unit
class TestConcurrentDecisions:
    """Tests for two writers racing on the same order."""

    def test_second_accept_from_stale_session_loses(self, db, session_factory, vendor, sent_order):
        """Test the slower of two acceptances fails and no second invoice appears."""
        message, _ = NegotiationService(db).submit_quotation(vendor, sent_order.id, {"amount": 5000})

        first_db, second_db = session_factory(), session_factory()
        first_admin = first_db.query(User).filter(User.email == "owner@example.com").one()
        second_admin = second_db.query(User).filter(User.email == "owner@example.com").one()

        # Second client read everything before the first one decided
        slow = NegotiationService(second_db)
        stale_order = slow._order(sent_order.id)
        stale_quotation = slow._quotation(stale_order, message.id)
        assert stale_quotation.status == "pending"

        NegotiationService(first_db).accept_quotation(first_admin, sent_order.id, message.id)

        with pytest.raises(AlreadyAccepted) as exc:
            with slow.transaction():
                slow._claim_quotation(stale_order, stale_quotation, "acceptQuotation", {"status": "accepted"})
        assert exc.value.current_status == "accepted"
        assert slow.events == []

        with pytest.raises(AlreadyAccepted):
            NegotiationService(second_db).accept_quotation(second_admin, sent_order.id, message.id)
        assert invoice_count(db, sent_order.id) == 1

    def test_accept_and_reject_race(self, db, session_factory, vendor, sent_order):
        """Test a rejection that lost to an acceptance reports the accepted state."""
        message, _ = NegotiationService(db).submit_quotation(vendor, sent_order.id, {"amount": 5000})

        first_db, second_db = session_factory(), session_factory()
        first_admin = first_db.query(User).filter(User.email == "owner@example.com").one()

        slow = NegotiationService(second_db)
        stale_order = slow._order(sent_order.id)
        stale_quotation = slow._quotation(stale_order, message.id)

        NegotiationService(first_db).accept_quotation(first_admin, sent_order.id, message.id)

        with pytest.raises(InvalidTransition) as exc:
            with slow.transaction():
                slow._claim_quotation(stale_order, stale_quotation, "rejectQuotation", {"status": "rejected"})
        assert exc.value.quotation_status == "accepted"
        assert quotation_status(db, message.id) == "accepted"

    def test_stale_order_claim_reports_fresh_status(self, db, session_factory, admin, sent_order):
        """Test a lost order claim rolls back and carries the stored status."""
        second_db = session_factory()
        slow = OrderLedger(second_db)
        stale = slow._order(sent_order.id)

        OrderLedger(db).cancel_order(admin, sent_order.id)

        with pytest.raises(InvalidTransition) as exc:
            with slow.transaction():
                slow._claim_order(stale, "rejectOrder", expected=["sent"], values={"status": "rejected"})
        assert exc.value.current_status == "cancelled"


@pytest.mark.unit
class TestChat:
    """Tests for plain negotiation messages."""

    def test_vendor_and_admin_can_chat(self, db, admin, vendor, sent_order):
        """Test both parties post messages without bumping the version."""
        version = db.get(Order, sent_order.id).version
        svc = NegotiationService(db)
        m1 = svc.send_message(vendor, sent_order.id, "  Can deliver next week  ", client_ref="abc")
        m2 = svc.send_message(admin, sent_order.id, "Great")

        assert m1.content == "Can deliver next week"
        assert m1.client_ref == "abc"
        assert m1.sender_role == "vendor"
        assert m2.sender_role == "owner"
        db.expire_all()
        order = db.get(Order, sent_order.id)
        assert order.version == version
        assert order.last_message_at is not None
        assert [e.name for e in svc.events] == ["newMessage", "newMessage"]

    def test_chat_blocked_on_draft_and_closed(self, db, admin, vendor, draft_order):
        """Test drafts and closed chats refuse messages."""
        with pytest.raises(InvalidTransition):
            NegotiationService(db).send_message(admin, draft_order.id, "hello")

        OrderLedger(db).send_order(admin, draft_order.id)
        message, _ = NegotiationService(db).submit_quotation(vendor, draft_order.id, {"amount": 10})
        NegotiationService(db).accept_quotation(admin, draft_order.id, message.id)

        with pytest.raises(InvalidTransition):
            NegotiationService(db).send_message(vendor, draft_order.id, "still there?")

    def test_outsiders_cannot_chat(self, db, other_vendor, client_user, sent_order):
        """Test clients and foreign vendors cannot post."""
        for actor in (other_vendor, client_user):
            with pytest.raises(NotAuthorized):
                NegotiationService(db).send_message(actor, sent_order.id, "hi")

    def test_empty_message(self, db, admin, sent_order):
        """Test blank content is refused."""
        with pytest.raises(ValidationError):
            NegotiationService(db).send_message(admin, sent_order.id, "   ")
        assert db.query(NegotiationMessage).filter(NegotiationMessage.message_type == "text").count() == 0

"""
Unit tests per le regole del registro (app.services.ledger).

Le regole sono pure: i test operano su istanze transienti dei modelli,
senza sessione database.
"""

import uuid
from decimal import Decimal

import pytest

from app.core.exceptions import (
    AlreadyClosed,
    AlreadyFinalized,
    BusinessValidationError,
    InvalidAmount,
    InvalidConfig,
    InvalidDiscount,
    InvalidState,
    MissingReference,
    OverPayment,
)
from app.core.money import Money
from app.schemas.invoice import InvoiceStatus
from app.services import ledger

from conftest import NOW, make_commission, make_invoice, make_practitioner


# ============================================================
# Tests for invoice creation
# ============================================================


class TestInvoiceCreation:
    """Tests for amounts and patient due."""

    def test_patient_due_is_total_minus_coverage_minus_discount(self):
        """Test dovuto = totale - copertura - sconto."""
        invoice = make_invoice(total="100.00", coverage="30.00", discount="5.00")

        assert ledger.patient_due(invoice) == Money.of("65.00")
        assert invoice.patient_amount == Decimal("65.00")
        assert invoice.status == InvoiceStatus.DRAFT.value

    def test_discount_may_consume_whole_patient_share(self):
        invoice = make_invoice(total="100.00", coverage="30.00", discount="70.00")
        assert ledger.patient_due(invoice).is_zero

    def test_negative_total_is_rejected(self):
        with pytest.raises(InvalidAmount):
            make_invoice(total="-1.00")

    def test_coverage_above_total_is_rejected(self):
        """Test copertura superiore al totale."""
        with pytest.raises(InvalidAmount):
            make_invoice(total="100.00", coverage="100.01")

    def test_discount_above_net_is_rejected(self):
        """Test sconto superiore a totale - copertura."""
        with pytest.raises(InvalidDiscount) as exc_info:
            make_invoice(total="100.00", coverage="30.00", discount="70.01")
        assert exc_info.value.extra == {"max_discount": "70.00"}

    def test_negative_discount_is_rejected(self):
        with pytest.raises(InvalidAmount):
            make_invoice(total="100.00", discount="-1.00")

    def test_total_derived_from_items(self):
        """Test il totale deriva dalle righe."""
        items = [
            ledger.build_item(line_number=1, description="Visita", quantity=1,
                              unit_price=Decimal("60.00"), currency="EUR"),
            ledger.build_item(line_number=2, description="Ecografia", quantity=2,
                              unit_price=Decimal("20.00"), currency="EUR",
                              insurance_coverage=Decimal("10.00")),
        ]
        invoice = ledger.build_invoice(
            invoice_number="F-2025-000002",
            patient_id=uuid.uuid4(),
            created_by=uuid.uuid4(),
            currency="EUR",
            items=items,
            now=NOW,
        )

        assert invoice.total_amount == Decimal("100.00")
        assert invoice.insurance_coverage == Decimal("10.00")
        assert invoice.patient_amount == Decimal("90.00")
        assert all(item.invoice_id == invoice.id for item in invoice.items)

    def test_explicit_total_must_match_items(self):
        items = [
            ledger.build_item(line_number=1, description="Visita", quantity=1,
                              unit_price=Decimal("60.00"), currency="EUR"),
        ]
        with pytest.raises(InvalidAmount):
            ledger.build_invoice(
                invoice_number="F-2025-000003",
                patient_id=uuid.uuid4(),
                created_by=uuid.uuid4(),
                currency="EUR",
                total=Money.of("70.00"),
                items=items,
            )

    def test_item_with_zero_quantity_is_rejected(self):
        with pytest.raises(InvalidAmount):
            ledger.build_item(line_number=1, description="Visita", quantity=0,
                              unit_price=Decimal("60.00"), currency="EUR")


# ============================================================
# Tests for invoice lifecycle
# ============================================================


class TestInvoiceLifecycle:
    """Tests for validate, cancel and add_item."""

    def test_validate_draft(self, draft_invoice):
        ledger.validate_invoice(draft_invoice, NOW)

        assert draft_invoice.status == InvoiceStatus.VALIDATED.value
        assert draft_invoice.validated_at == NOW

    def test_validate_twice_fails(self, validated_invoice):
        with pytest.raises(InvalidState):
            ledger.validate_invoice(validated_invoice)

    @pytest.mark.parametrize("status", ["draft", "validated", "partially_paid"])
    def test_cancel_from_non_terminal_state(self, status):
        """Test annullamento consentito da ogni stato non terminale."""
        invoice = make_invoice(status=status)
        ledger.cancel_invoice(invoice, "Errore anagrafica", NOW)

        assert invoice.status == InvoiceStatus.CANCELLED.value
        assert invoice.cancellation_reason == "Errore anagrafica"
        assert invoice.cancelled_at == NOW

    def test_cancel_paid_invoice_fails(self):
        invoice = make_invoice(status="paid")
        with pytest.raises(InvalidState):
            ledger.cancel_invoice(invoice)
        assert invoice.status == "paid"

    def test_cancel_is_terminal(self, draft_invoice):
        ledger.cancel_invoice(draft_invoice)

        with pytest.raises(InvalidState):
            ledger.cancel_invoice(draft_invoice)
        with pytest.raises(InvalidState):
            ledger.validate_invoice(draft_invoice)

    def test_add_item_recomputes_totals(self):
        invoice = make_invoice(total="0")
        item = ledger.build_item(line_number=99, description="Farmaco", quantity=3,
                                 unit_price=Decimal("4.50"), currency="EUR")

        due = ledger.add_item(invoice, item)

        assert due == Money.of("13.50")
        assert invoice.total_amount == Decimal("13.50")
        assert item.line_number == 1
        assert item.invoice_id == invoice.id

    def test_add_item_keeps_explicit_total(self):
        """Test la riga si somma al totale indicato senza righe."""
        invoice = make_invoice(total="100.00")
        item = ledger.build_item(line_number=1, description="Medicazione", quantity=1,
                                 unit_price=Decimal("20.00"), currency="EUR")

        due = ledger.add_item(invoice, item)

        assert invoice.total_amount == Decimal("120.00")
        assert due == Money.of("120.00")

    def test_add_item_adds_line_coverage_to_explicit_coverage(self):
        invoice = make_invoice(total="100.00", coverage="30.00")
        item = ledger.build_item(line_number=1, description="Radiografia", quantity=1,
                                 unit_price=Decimal("50.00"), currency="EUR",
                                 insurance_coverage=Decimal("10.00"))

        due = ledger.add_item(invoice, item)

        assert invoice.total_amount == Decimal("150.00")
        assert invoice.insurance_coverage == Decimal("40.00")
        assert invoice.patient_amount == Decimal("110.00")
        assert due == Money.of("110.00")

    def test_validate_zero_due_invoice_is_paid(self):
        """Test copertura totale: la fattura validata risulta pagata."""
        invoice = make_invoice(total="100.00", coverage="100.00")

        ledger.validate_invoice(invoice, NOW)

        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.validated_at == NOW
        with pytest.raises(InvalidState):
            ledger.apply_payment(invoice, Money.of("0.01"), "cash", None, uuid.uuid4())

    def test_validate_fully_discounted_invoice_is_paid(self):
        invoice = make_invoice(total="100.00", coverage="40.00", discount="60.00")

        ledger.validate_invoice(invoice)

        assert invoice.status == InvoiceStatus.PAID.value

    def test_add_item_on_validated_invoice_fails(self, validated_invoice):
        item = ledger.build_item(line_number=1, description="Farmaco", quantity=1,
                                 unit_price=Decimal("4.50"), currency="EUR")
        with pytest.raises(InvalidState):
            ledger.add_item(validated_invoice, item)
        assert validated_invoice.items == []


# ============================================================
# Tests for payment application
# ============================================================


class TestPaymentApplication:
    """Tests for apply_payment and the invoice state machine."""

    def test_partial_then_full_payment(self, validated_invoice):
        """Test pagamento parziale e saldo."""
        actor = uuid.uuid4()
        ledger.apply_payment(validated_invoice, Money.of("20.00"), "cash", None, actor)
        assert validated_invoice.status == InvoiceStatus.PARTIALLY_PAID.value

        ledger.apply_payment(validated_invoice, Money.of("50.00"), "card", "POS-778", actor)
        assert validated_invoice.status == InvoiceStatus.PAID.value
        assert ledger.applied_amount(validated_invoice) == Money.of("70.00")

    def test_draft_invoice_accepts_payments(self, draft_invoice):
        ledger.apply_payment(draft_invoice, Money.of("10.00"), "cash", None, uuid.uuid4())
        assert draft_invoice.status == InvoiceStatus.PARTIALLY_PAID.value

    def test_overpayment_has_no_side_effect(self, validated_invoice):
        """Test il pagamento eccedente fallisce senza modificare la fattura."""
        actor = uuid.uuid4()
        ledger.apply_payment(validated_invoice, Money.of("60.00"), "cash", None, actor)

        with pytest.raises(OverPayment) as exc_info:
            ledger.apply_payment(validated_invoice, Money.of("10.01"), "cash", None, actor)

        assert exc_info.value.extra["remaining"] == "10.00"
        assert len(validated_invoice.payments) == 1
        assert validated_invoice.status == InvoiceStatus.PARTIALLY_PAID.value

    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    def test_non_positive_amount(self, validated_invoice, amount):
        with pytest.raises(InvalidAmount):
            ledger.apply_payment(validated_invoice, Money.of(amount), "cash", None, uuid.uuid4())
        assert validated_invoice.payments == []

    @pytest.mark.parametrize("method", ["card", "check", "transfer", "mobile_money"])
    def test_reference_required_for_non_cash(self, validated_invoice, method):
        with pytest.raises(MissingReference):
            ledger.apply_payment(validated_invoice, Money.of("10.00"), method, "  ", uuid.uuid4())

    def test_unknown_method(self, validated_invoice):
        with pytest.raises(BusinessValidationError) as exc_info:
            ledger.apply_payment(validated_invoice, Money.of("10.00"), "bitcoin", "x", uuid.uuid4())
        assert exc_info.value.error_code == "INVALID_PAYMENT_METHOD"

    def test_cancelled_invoice_rejects_payments(self, draft_invoice):
        ledger.cancel_invoice(draft_invoice)
        with pytest.raises(InvalidState):
            ledger.apply_payment(draft_invoice, Money.of("10.00"), "cash", None, uuid.uuid4())

    def test_status_for_applied(self):
        due = Money.of("70.00")
        assert ledger.status_for_applied(Money.zero(), due) is None
        assert ledger.status_for_applied(Money.of("0.01"), due) == InvoiceStatus.PARTIALLY_PAID
        assert ledger.status_for_applied(due, due) == InvoiceStatus.PAID

    def test_invoice_payment_scenario(self):
        """
        Scenario: totale 100.00, copertura 30.00 -> dovuto 70.00.
        Validazione, pagamento in contanti di 70.00 -> paid;
        un ulteriore pagamento di 0.01 fallisce con InvalidState.
        """
        invoice = make_invoice(total="100.00", coverage="30.00", discount="0")
        assert ledger.patient_due(invoice) == Money.of("70.00")
        assert invoice.status == "draft"

        ledger.validate_invoice(invoice)
        assert invoice.status == "validated"

        payment = ledger.apply_payment(invoice, Money.of("70.00"), "cash", None, uuid.uuid4())
        assert invoice.status == "paid"
        assert invoice.payments == [payment]
        assert payment.reference is None

        with pytest.raises(InvalidState):
            ledger.apply_payment(invoice, Money.of("0.01"), "cash", None, uuid.uuid4())


# ============================================================
# Tests for cash sessions
# ============================================================


class TestCashSession:
    """Tests for open, record_cash_flow and close."""

    def test_cash_session_scenario(self, validated_invoice):
        """
        Scenario: fondo 50.00, incasso contanti 20.00, chiusura 70.00
        -> differenza 0.00; seconda chiusura -> AlreadyClosed.
        """
        actor = uuid.uuid4()
        session = ledger.open_cash_session(actor, Money.of("50.00"), now=NOW)

        payment = ledger.apply_payment(validated_invoice, Money.of("20.00"), "cash", None, actor)
        ledger.record_cash_flow(session, payment, "EUR")
        assert payment.cash_session_id == session.id

        variance = ledger.close_cash_session(session, Money.of("70.00"))
        assert variance == Money.of("0.00")
        assert session.expected_balance == Decimal("70.00")
        assert session.is_open is False

        with pytest.raises(AlreadyClosed):
            ledger.close_cash_session(session, Money.of("70.00"))

    def test_variance_is_closing_minus_expected(self):
        session = ledger.open_cash_session(uuid.uuid4(), Money.of("50.00"))
        session.cash_total = Decimal("35.50")

        variance = ledger.close_cash_session(session, Money.of("80.00"))

        assert variance == Money.of("-5.50")
        assert session.variance == Decimal("-5.50")

    def test_non_cash_payment_is_ignored(self, validated_invoice):
        actor = uuid.uuid4()
        session = ledger.open_cash_session(actor, Money.of("50.00"))
        payment = ledger.apply_payment(validated_invoice, Money.of("20.00"), "card", "POS-1", actor)

        ledger.record_cash_flow(session, payment, "EUR")

        assert session.cash_total == Decimal("0")
        assert payment.cash_session_id is None

    def test_cash_flow_of_another_actor(self, validated_invoice):
        session = ledger.open_cash_session(uuid.uuid4(), Money.of("50.00"))
        payment = ledger.apply_payment(validated_invoice, Money.of("20.00"), "cash", None, uuid.uuid4())

        with pytest.raises(InvalidState):
            ledger.record_cash_flow(session, payment, "EUR")

    def test_cash_flow_in_other_currency(self, validated_invoice):
        actor = uuid.uuid4()
        session = ledger.open_cash_session(actor, Money.of("5000", "XOF"))
        payment = ledger.apply_payment(validated_invoice, Money.of("20.00"), "cash", None, actor)

        with pytest.raises(InvalidAmount) as exc_info:
            ledger.record_cash_flow(session, payment, validated_invoice.currency)

        assert exc_info.value.error_code == "CURRENCY_MISMATCH"
        assert session.cash_total == Decimal("0")
        assert payment.cash_session_id is None

    def test_cash_flow_on_closed_session(self, validated_invoice):
        actor = uuid.uuid4()
        session = ledger.open_cash_session(actor, Money.of("50.00"))
        ledger.close_cash_session(session, Money.of("50.00"))
        payment = ledger.apply_payment(validated_invoice, Money.of("20.00"), "cash", None, actor)

        with pytest.raises(AlreadyClosed):
            ledger.record_cash_flow(session, payment, "EUR")

    def test_negative_balances_are_rejected(self):
        with pytest.raises(InvalidAmount):
            ledger.open_cash_session(uuid.uuid4(), Money.of("-1.00"))

        session = ledger.open_cash_session(uuid.uuid4(), Money.of("0"))
        with pytest.raises(InvalidAmount):
            ledger.close_cash_session(session, Money.of("-0.01"))
        assert session.is_open is True


# ============================================================
# Tests for commissions
# ============================================================


class TestCommission:
    """Tests for the commission calculator."""

    def test_rate_commission(self, practitioner):
        """Test 10% di 200.00 = 20.00."""
        commission = ledger.calculate_commission(practitioner, Money.of("200.00"), "2025-03")

        assert commission.commission_amount == Decimal("20.00")
        assert commission.status == "due"
        assert commission.paid_at is None

    def test_fixed_commission(self):
        practitioner = make_practitioner(rate=None, fixed_amount="15.00")
        commission = ledger.calculate_commission(practitioner, Money.of("200.00"), "2025-03")

        assert commission.commission_amount == Decimal("15.00")
        assert commission.commission_rate is None

    @pytest.mark.parametrize("rate,fixed_amount", [(None, None), ("10", "15.00")])
    def test_invalid_basis(self, rate, fixed_amount):
        """Test entrambe o nessuna base impostata -> InvalidConfig."""
        practitioner = make_practitioner(rate=rate, fixed_amount=fixed_amount)
        with pytest.raises(InvalidConfig):
            ledger.calculate_commission(practitioner, Money.of("200.00"), "2025-03")

    def test_rate_out_of_range(self):
        with pytest.raises(InvalidConfig):
            ledger.commission_basis(Decimal("100.01"), None, "EUR")

    def test_rounding_half_even(self):
        practitioner = make_practitioner(rate="12.5")
        commission = ledger.calculate_commission(practitioner, Money.of("0.20"), "2025-03")
        assert commission.commission_amount == Decimal("0.02")

    @pytest.mark.parametrize("period", ["2025-13", "2025-3", "marzo", ""])
    def test_invalid_period(self, practitioner, period):
        with pytest.raises(BusinessValidationError):
            ledger.calculate_commission(practitioner, Money.of("200.00"), period)

    def test_refresh_due_commission(self, practitioner):
        existing = make_commission(practitioner)
        fresh = ledger.calculate_commission(practitioner, Money.of("300.00"), "2025-03")

        ledger.refresh_commission(existing, fresh)

        assert existing.commission_amount == Decimal("30.00")
        assert existing.status == "due"

    def test_refresh_paid_commission_fails(self, practitioner):
        existing = make_commission(practitioner, paid=True)
        fresh = ledger.calculate_commission(practitioner, Money.of("300.00"), "2025-03")

        with pytest.raises(AlreadyFinalized):
            ledger.refresh_commission(existing, fresh)
        assert existing.commission_amount == Decimal("20.00")

    def test_mark_paid_twice_fails(self, practitioner):
        commission = make_commission(practitioner, paid=True)
        assert commission.paid_at == NOW
        with pytest.raises(InvalidState):
            ledger.mark_commission_paid(commission)

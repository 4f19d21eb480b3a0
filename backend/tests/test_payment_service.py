"""
Unit tests for PaymentService e CashSessionService.
"""

import logging
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from app.core.exceptions import (
    AlreadyClosed,
    AlreadyOpen,
    AuthorizationError,
    InvalidAmount,
    InvalidState,
    MissingReference,
    OverPayment,
)
from app.core.money import Money
from app.schemas.cash_session import CashSessionFilter
from app.schemas.invoice import PaymentCreate, PaymentFilter, PaymentMethod
from app.services import ledger
from app.services.cash_session_service import CashSessionService, build_cash_session_query
from app.services.invoice_service import invoice_service
from app.services.payment_service import build_payment_query, payment_service

from conftest import make_invoice, result_of


@pytest.fixture
def invoice():
    """Fattura validata con dovuto 70.00."""
    invoice = make_invoice(total="100.00", coverage="30.00")
    ledger.validate_invoice(invoice)
    return invoice


# ============================================================
# Tests for PaymentService.apply
# ============================================================


class TestApplyPayment:
    """Tests for payment application with locking and cash sessions."""

    async def test_cash_payment_goes_to_open_session(self, mock_db, cashier_ctx, invoice):
        """Test pagamento in contanti registrato nella cassa dell'operatore."""
        session = ledger.open_cash_session(cashier_ctx.actor_id, Money.of("50.00"))
        data = PaymentCreate(amount=Decimal("70.00"), method=PaymentMethod.CASH)

        with patch.object(invoice_service, "_load", AsyncMock(return_value=invoice)) as load, \
                patch.object(CashSessionService, "find_open", AsyncMock(return_value=session)):
            result = await payment_service.apply(mock_db, cashier_ctx, invoice.id, data)

        load.assert_awaited_once_with(mock_db, invoice.id, for_update=True)
        assert result.status == "paid"
        assert session.cash_total == Decimal("70.00")
        assert result.payments[0].cash_session_id == session.id
        mock_db.commit.assert_awaited_once()

    async def test_cash_payment_without_session(self, mock_db, cashier_ctx, invoice):
        data = PaymentCreate(amount=Decimal("20.00"), method=PaymentMethod.CASH)

        with patch.object(invoice_service, "_load", AsyncMock(return_value=invoice)), \
                patch.object(CashSessionService, "find_open", AsyncMock(return_value=None)):
            result = await payment_service.apply(mock_db, cashier_ctx, invoice.id, data)

        assert result.status == "partially_paid"
        assert result.payments[0].cash_session_id is None

    async def test_cash_payment_in_other_currency_rolls_back(self, mock_db, cashier_ctx, invoice):
        """Test contanti EUR su una cassa in XOF: transazione annullata."""
        session = ledger.open_cash_session(cashier_ctx.actor_id, Money.of("5000", "XOF"))
        data = PaymentCreate(amount=Decimal("20.00"), method=PaymentMethod.CASH)

        with patch.object(invoice_service, "_load", AsyncMock(return_value=invoice)), \
                patch.object(CashSessionService, "find_open", AsyncMock(return_value=session)):
            with pytest.raises(InvalidAmount) as exc_info:
                await payment_service.apply(mock_db, cashier_ctx, invoice.id, data)

        assert exc_info.value.error_code == "CURRENCY_MISMATCH"
        assert session.cash_total == Decimal("0")
        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_awaited()

    async def test_card_payment_skips_cash_session(self, mock_db, cashier_ctx, invoice):
        data = PaymentCreate(amount=Decimal("20.00"), method=PaymentMethod.CARD, reference="POS-0042")
        find_open = AsyncMock()

        with patch.object(invoice_service, "_load", AsyncMock(return_value=invoice)), \
                patch.object(CashSessionService, "find_open", find_open):
            await payment_service.apply(mock_db, cashier_ctx, invoice.id, data)

        find_open.assert_not_awaited()

    async def test_overpayment_rolls_back(self, mock_db, cashier_ctx, invoice):
        """Test il pagamento eccedente annulla la transazione."""
        data = PaymentCreate(amount=Decimal("70.01"), method=PaymentMethod.CASH)

        with patch.object(invoice_service, "_load", AsyncMock(return_value=invoice)):
            with pytest.raises(OverPayment):
                await payment_service.apply(mock_db, cashier_ctx, invoice.id, data)

        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_awaited()
        assert invoice.payments == []

    async def test_missing_reference(self, mock_db, cashier_ctx, invoice):
        data = PaymentCreate(amount=Decimal("10.00"), method=PaymentMethod.TRANSFER)

        with patch.object(invoice_service, "_load", AsyncMock(return_value=invoice)):
            with pytest.raises(MissingReference):
                await payment_service.apply(mock_db, cashier_ctx, invoice.id, data)

    async def test_paid_invoice_rejects_payment(self, mock_db, cashier_ctx, invoice):
        invoice.status = "paid"
        data = PaymentCreate(amount=Decimal("0.01"), method=PaymentMethod.CASH)

        with patch.object(invoice_service, "_load", AsyncMock(return_value=invoice)):
            with pytest.raises(InvalidState):
                await payment_service.apply(mock_db, cashier_ctx, invoice.id, data)

    async def test_secretary_cannot_apply(self, mock_db, secretary_ctx):
        data = PaymentCreate(amount=Decimal("10.00"), method=PaymentMethod.CASH)

        with pytest.raises(AuthorizationError):
            await payment_service.apply(mock_db, secretary_ctx, uuid.uuid4(), data)
        mock_db.execute.assert_not_awaited()

    def test_build_payment_query(self):
        sql = str(build_payment_query(PaymentFilter(method=PaymentMethod.CASH)))
        assert "payments.method" in sql


# ============================================================
# Tests for CashSessionService
# ============================================================


class TestCashSessionService:
    """Tests for open and close of cash sessions."""

    async def test_open(self, mock_db, cashier_ctx):
        with patch.object(CashSessionService, "find_open", AsyncMock(return_value=None)):
            session = await CashSessionService.open(cashier_ctx, Decimal("50.00"), None, None, mock_db)

        assert session.is_open is True
        assert session.opening_balance == Decimal("50.00")
        assert session.currency == "EUR"
        mock_db.add.assert_called_once_with(session)
        mock_db.commit.assert_awaited_once()

    async def test_open_twice(self, mock_db, cashier_ctx):
        """Test una sola sessione aperta per operatore."""
        existing = ledger.open_cash_session(cashier_ctx.actor_id, Money.of("50.00"))

        with patch.object(CashSessionService, "find_open", AsyncMock(return_value=existing)):
            with pytest.raises(AlreadyOpen):
                await CashSessionService.open(cashier_ctx, Decimal("10.00"), None, None, mock_db)
        mock_db.add.assert_not_called()

    async def test_close_with_variance_logs_warning(self, mock_db, cashier_ctx, caplog):
        session = ledger.open_cash_session(cashier_ctx.actor_id, Money.of("50.00"))
        session.cash_total = Decimal("20.00")
        mock_db.execute.return_value = result_of(value=session)

        with caplog.at_level(logging.WARNING, logger="app.services.cash_session_service"):
            result = await CashSessionService.close(cashier_ctx, session.id, Decimal("65.00"), None, mock_db)

        assert result.is_open is False
        assert result.expected_balance == Decimal("70.00")
        assert result.variance == Decimal("-5.00")
        assert "differenza" in caplog.text

    async def test_close_twice(self, mock_db, cashier_ctx):
        session = ledger.open_cash_session(cashier_ctx.actor_id, Money.of("50.00"))
        ledger.close_cash_session(session, Money.of("50.00"))
        mock_db.execute.return_value = result_of(value=session)

        with pytest.raises(AlreadyClosed):
            await CashSessionService.close(cashier_ctx, session.id, Decimal("50.00"), None, mock_db)

    async def test_close_session_of_another_cashier(self, mock_db, cashier_ctx):
        session = ledger.open_cash_session(uuid.uuid4(), Money.of("50.00"))
        mock_db.execute.return_value = result_of(value=session)

        with pytest.raises(AuthorizationError):
            await CashSessionService.close(cashier_ctx, session.id, Decimal("50.00"), None, mock_db)
        assert session.is_open is True

    async def test_supervisor_closes_any_session(self, mock_db, supervisor_ctx):
        session = ledger.open_cash_session(uuid.uuid4(), Money.of("50.00"))
        mock_db.execute.return_value = result_of(value=session)

        result = await CashSessionService.close(supervisor_ctx, session.id, Decimal("50.00"), None, mock_db)

        assert result.variance == Decimal("0.00")

    async def test_history_of_cashier_is_scoped(self, mock_db, cashier_ctx):
        mock_db.execute.return_value = result_of(scalars=[])

        await CashSessionService.get_history(cashier_ctx, CashSessionFilter(actor_id=uuid.uuid4()), mock_db)

        stmt = mock_db.execute.await_args.args[0]
        assert cashier_ctx.actor_id in stmt.compile().params.values()

    def test_build_cash_session_query(self):
        sql = str(build_cash_session_query(CashSessionFilter(is_open=True)))
        assert "cash_sessions.is_open" in sql

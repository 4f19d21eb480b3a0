"""
Service Layer per i Pagamenti
Progetto: Clinic Ledger (Gestionale Clinica)

Applicazione dei pagamenti alle fatture. La riga della fattura viene
bloccata (SELECT ... FOR UPDATE) prima della verifica del residuo, così
due pagamenti concorrenti sulla stessa fattura non possono superare
insieme il dovuto.
"""

import logging
import uuid
from typing import Sequence

from sqlalchemy import Select, and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import commit_or_conflict
from app.core.money import Money
from app.core.permissions import Capability, OperationContext
from app.models import Invoice, Payment
from app.schemas.invoice import PaymentCreate, PaymentFilter, PaymentMethod
from app.services import ledger
from app.services.cash_session_service import CashSessionService
from app.services.invoice_service import invoice_service
from app.utils.dates import day_bounds

# Logger per questo modulo
logger = logging.getLogger(__name__)


def build_payment_query(filters: PaymentFilter) -> Select:
    """Compone la query dei pagamenti a partire dal filtro."""
    conditions = []

    if filters.invoice_id:
        conditions.append(Payment.invoice_id == filters.invoice_id)
    if filters.received_by:
        conditions.append(Payment.received_by == filters.received_by)
    if filters.method:
        conditions.append(Payment.method == filters.method.value)

    lower, upper = day_bounds(filters.from_date, filters.to_date)
    if lower is not None:
        conditions.append(Payment.payment_date >= lower)
    if upper is not None:
        conditions.append(Payment.payment_date < upper)

    stmt = select(Payment)
    if conditions:
        stmt = stmt.where(and_(*conditions))
    return stmt.order_by(Payment.payment_date.desc())


class PaymentService:
    """Service per la registrazione e la consultazione dei pagamenti."""

    async def apply(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        invoice_id: uuid.UUID,
        data: PaymentCreate,
    ) -> Invoice:
        """
        Applica un pagamento a una fattura.

        Steps:
        1. Blocca la fattura (FOR UPDATE) e ricarica i pagamenti
        2. Verifica e applica il pagamento (ledger)
        3. Se in contanti, lo registra nella sessione di cassa aperta
           dell'operatore, nella stessa transazione
        4. Commit

        Se un passo fallisce la transazione viene annullata e la fattura
        resta invariata.

        Raises:
            InvalidState: fattura annullata o già pagata
            InvalidAmount: importo non positivo
            MissingReference: riferimento mancante per metodi non contanti
            OverPayment: il pagamento supera il residuo
        """
        ctx.require(Capability.PAYMENT_APPLY)

        try:
            invoice = await invoice_service._load(db, invoice_id, for_update=True)
            amount = Money.of(data.amount, invoice.currency)

            payment = ledger.apply_payment(
                invoice,
                amount,
                data.method,
                data.reference,
                actor_id=ctx.actor_id,
                notes=data.notes,
            )

            if data.method == PaymentMethod.CASH:
                session = await CashSessionService.find_open(ctx.actor_id, db, for_update=True)
                if session is not None:
                    ledger.record_cash_flow(session, payment, invoice.currency)
                else:
                    logger.info(
                        "Pagamento in contanti su %s senza sessione di cassa aperta per %s",
                        invoice.invoice_number,
                        ctx.actor_id,
                    )
        except Exception:
            await db.rollback()
            raise

        await commit_or_conflict(db, "La fattura è stata modificata da un'altra operazione")

        logger.info(
            "Pagamento %s di %s registrato su %s (%s): stato %s",
            payment.method,
            amount,
            invoice.invoice_number,
            payment.reference or "-",
            invoice.status,
        )
        return invoice

    async def get_all(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        filters: PaymentFilter,
        skip: int = 0,
        limit: int = 100,
    ) -> Sequence[Payment]:
        ctx.require(Capability.INVOICE_READ)
        stmt = build_payment_query(filters).offset(skip).limit(limit)
        result = await db.execute(stmt)
        return result.scalars().all()


payment_service = PaymentService()

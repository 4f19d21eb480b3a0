"""
Service Layer per la Fatturazione
Progetto: Clinic Ledger (Gestionale Clinica)

Definisce la logica transazionale per le fatture: creazione con
numerazione annuale, validazione, annullamento, righe e report incassi.
Le regole sugli importi e sugli stati sono in app.services.ledger.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import Select, and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import advisory_xact_lock, commit_or_conflict
from app.core.exceptions import ConflictError, NotFoundError
from app.core.money import Money
from app.core.permissions import Capability, OperationContext
from app.models import Invoice, Payment
from app.schemas.invoice import (
    InvoiceCreate,
    InvoiceFilter,
    InvoiceItemCreate,
    InvoiceList,
    InvoiceStatus,
    PaymentMethod,
    RevenueReport,
)
from app.services import ledger
from app.utils.dates import day_bounds

# Logger per questo modulo
logger = logging.getLogger(__name__)


def build_invoice_query(filters: InvoiceFilter) -> Select:
    """
    Compone la query della lista fatture a partire dal filtro.

    Unico punto in cui i criteri vengono tradotti in condizioni SQL.
    """
    conditions = []

    if filters.patient_id:
        conditions.append(Invoice.patient_id == filters.patient_id)
    if filters.status:
        conditions.append(Invoice.status == filters.status.value)
    if filters.created_by:
        conditions.append(Invoice.created_by == filters.created_by)

    lower, upper = day_bounds(filters.from_date, filters.to_date)
    if lower is not None:
        conditions.append(Invoice.invoice_date >= lower)
    if upper is not None:
        conditions.append(Invoice.invoice_date < upper)

    stmt = select(Invoice)
    if conditions:
        stmt = stmt.where(and_(*conditions))
    return stmt.order_by(Invoice.invoice_date.desc(), Invoice.invoice_number.desc())


class InvoiceService:
    """
    Service per la gestione delle operazioni sulle fatture.

    Ogni metodo riceve il contesto dell'operazione e verifica la
    capacità richiesta prima di accedere ai dati.
    """

    async def create(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        data: InvoiceCreate,
    ) -> Invoice:
        """
        Crea una fattura in bozza.

        Steps:
        1. Verifica capacità invoice.write
        2. Costruisce le righe e verifica gli importi (ledger)
        3. Genera il numero fattura sotto advisory lock annuale
        4. Salva e restituisce la fattura con relazioni caricate

        Raises:
            InvalidAmount: importi negativi o copertura > totale
            InvalidDiscount: sconto > totale - copertura
            ConflictError: numerazione esaurita o numero duplicato
        """
        ctx.require(Capability.INVOICE_WRITE)
        currency = (data.currency or settings.default_currency).upper()

        items = [
            self._build_item(item, line_number, currency)
            for line_number, item in enumerate(data.items, start=1)
        ]

        # Verifica degli importi prima di consumare un numero fattura
        now = ledger.utcnow()
        invoice = ledger.build_invoice(
            invoice_number="",
            patient_id=data.patient_id,
            created_by=ctx.actor_id,
            currency=currency,
            total=Money.of(data.total_amount, currency) if data.total_amount is not None else None,
            coverage=(
                Money.of(data.insurance_coverage, currency)
                if data.insurance_coverage is not None
                else None
            ),
            discount=Money.of(data.discount, currency),
            items=items,
            consultation_id=data.consultation_id,
            due_date=data.due_date,
            notes=data.notes,
            now=now,
        )
        invoice.invoice_number = await self._generate_invoice_number(db, now.year)

        db.add(invoice)
        await commit_or_conflict(db, "Errore durante la creazione della fattura")

        logger.info(
            "Fattura %s creata: totale=%s copertura=%s sconto=%s dovuto=%s",
            invoice.invoice_number,
            invoice.total_amount,
            invoice.insurance_coverage,
            invoice.discount,
            invoice.patient_amount,
        )
        return await self._load(db, invoice.id)

    @staticmethod
    def _build_item(item: InvoiceItemCreate, line_number: int, currency: str):
        return ledger.build_item(
            line_number=line_number,
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            currency=currency,
            insurance_coverage=item.insurance_coverage,
            service_id=item.service_id,
            medication_id=item.medication_id,
        )

    async def _generate_invoice_number(self, db: AsyncSession, year: int) -> str:
        """
        Genera il numero fattura progressivo annuale.

        Formato: PREFISSO-YYYY-NNNNNN (es. F-2025-000001)

        L'advisory lock sull'anno serializza le creazioni concorrenti
        anche quando non esiste ancora nessuna fattura dell'anno.

        Raises:
            ConflictError: Se si raggiunge il limite annuo di numerazione
        """
        year_prefix = f"{settings.invoice_number_prefix}-{year}-"

        await advisory_xact_lock(db, "invoice_number", year)

        stmt = (
            select(Invoice.invoice_number)
            .where(Invoice.invoice_number.like(f"{year_prefix}%"))
            .order_by(Invoice.invoice_number.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        last_number = result.scalar_one_or_none()

        next_number = int(last_number.rsplit("-", 1)[1]) + 1 if last_number else 1

        if next_number > settings.invoice_sequence_limit:
            raise ConflictError(
                f"Limite numerazione fatture raggiunto per l'anno {year}"
            )

        return f"{year_prefix}{next_number:06d}"

    async def _load(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        for_update: bool = False,
    ) -> Invoice:
        """
        Carica una fattura con righe e pagamenti.

        Con for_update=True la riga viene bloccata (SELECT ... FOR UPDATE)
        fino a fine transazione e i dati in memoria vengono ricaricati.
        """
        stmt = select(Invoice).where(Invoice.id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        result = await db.execute(stmt)
        invoice = result.scalar_one_or_none()

        if not invoice:
            raise NotFoundError(f"Fattura {invoice_id} non trovata")
        return invoice

    async def get_by_id(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        invoice_id: uuid.UUID,
    ) -> Invoice:
        """
        Recupera una fattura per ID.

        Raises:
            NotFoundError: Fattura non trovata
        """
        ctx.require(Capability.INVOICE_READ)
        return await self._load(db, invoice_id)

    async def get_by_invoice_number(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        invoice_number: str,
    ) -> Invoice:
        """
        Recupera una fattura per numero.

        Raises:
            NotFoundError: Fattura non trovata
        """
        ctx.require(Capability.INVOICE_READ)
        result = await db.execute(select(Invoice).where(Invoice.invoice_number == invoice_number))
        invoice = result.scalar_one_or_none()

        if not invoice:
            raise NotFoundError(f"Fattura {invoice_number} non trovata")
        return invoice

    async def get_all(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        filters: InvoiceFilter,
        page: int = 1,
        per_page: int = 10,
    ) -> InvoiceList:
        """
        Recupera la lista paginata delle fatture.

        Args:
            db: Sessione database
            ctx: Contesto dell'operazione
            filters: Criteri di ricerca
            page: Numero pagina
            per_page: Elementi per pagina
        """
        ctx.require(Capability.INVOICE_READ)
        stmt = build_invoice_query(filters)

        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        total = (await db.execute(count_stmt)).scalar() or 0

        result = await db.execute(stmt.offset((page - 1) * per_page).limit(per_page))
        invoices = result.scalars().all()

        total_pages = (total + per_page - 1) // per_page if total > 0 else 1

        return InvoiceList(
            items=list(invoices),
            total=total,
            page=page,
            per_page=per_page,
            total_pages=total_pages,
        )

    async def add_item(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        invoice_id: uuid.UUID,
        data: InvoiceItemCreate,
    ) -> Invoice:
        """
        Aggiunge una riga a una fattura in bozza e ricalcola gli importi.

        Raises:
            InvalidState: fattura non in bozza
            InvalidAmount / InvalidDiscount: nuovi importi non coerenti
        """
        ctx.require(Capability.INVOICE_WRITE)
        invoice = await self._load(db, invoice_id, for_update=True)

        item = self._build_item(data, len(invoice.items) + 1, invoice.currency)
        ledger.add_item(invoice, item)

        await commit_or_conflict(db, "La fattura è stata modificata da un'altra operazione")
        logger.info("Riga aggiunta alla fattura %s: nuovo totale %s", invoice.invoice_number, invoice.total_amount)
        return await self._load(db, invoice.id)

    async def validate(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        invoice_id: uuid.UUID,
    ) -> Invoice:
        """
        Valida una fattura in bozza: da qui importi e righe sono immutabili.

        Raises:
            InvalidState: fattura non in bozza
        """
        ctx.require(Capability.INVOICE_WRITE)
        invoice = await self._load(db, invoice_id, for_update=True)

        ledger.validate_invoice(invoice)

        await commit_or_conflict(db, "La fattura è stata modificata da un'altra operazione")
        logger.info("Fattura %s validata da %s (stato: %s)", invoice.invoice_number, ctx.actor_id, invoice.status)
        return invoice

    async def cancel(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        invoice_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Invoice:
        """
        Annulla una fattura (stato terminale).

        Raises:
            InvalidState: fattura pagata o già annullata
        """
        ctx.require(Capability.INVOICE_CANCEL)
        invoice = await self._load(db, invoice_id, for_update=True)

        had_payments = bool(invoice.payments)
        ledger.cancel_invoice(invoice, reason)

        await commit_or_conflict(db, "La fattura è stata modificata da un'altra operazione")
        if had_payments:
            logger.warning(
                "Fattura %s annullata con pagamenti parziali per %s",
                invoice.invoice_number,
                invoice.paid_amount,
            )
        else:
            logger.info("Fattura %s annullata da %s", invoice.invoice_number, ctx.actor_id)
        return invoice

    async def get_revenue_report(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        from_date: date,
        to_date: date,
    ) -> RevenueReport:
        """
        Report finanziario del periodo nella valuta della clinica.

        Le fatture annullate sono escluse; l'incassato è la somma dei
        pagamenti registrati nel periodo, suddivisa per metodo.
        """
        ctx.require(Capability.REPORT_READ)
        currency = settings.default_currency
        lower, upper = day_bounds(from_date, to_date)

        invoice_stmt = select(Invoice).where(
            and_(
                Invoice.invoice_date >= lower,
                Invoice.invoice_date < upper,
                Invoice.status != InvoiceStatus.CANCELLED.value,
                Invoice.currency == currency,
            )
        )
        invoices = (await db.execute(invoice_stmt)).scalars().all()

        def total_of(attr: str) -> Money:
            return Money.total((ledger.to_money(getattr(i, attr), currency) for i in invoices), currency)

        outstanding = Money.total(
            (ledger.patient_due(i) - ledger.applied_amount(i) for i in invoices),
            currency,
        )

        payment_stmt = (
            select(
                Payment.method,
                func.count(Payment.id),
                func.coalesce(func.sum(Payment.amount), 0),
            )
            .join(Invoice, Payment.invoice_id == Invoice.id)
            .where(
                and_(
                    Payment.payment_date >= lower,
                    Payment.payment_date < upper,
                    Invoice.currency == currency,
                )
            )
            .group_by(Payment.method)
        )
        payment_rows = (await db.execute(payment_stmt)).all()

        collected_by_method: dict[PaymentMethod, Decimal] = {}
        payments_count = 0
        for method, count, amount in payment_rows:
            collected_by_method[PaymentMethod(method)] = Money.rounded(amount, currency).amount
            payments_count += count
        total_collected = Money.total(
            (Money.of(v, currency) for v in collected_by_method.values()), currency
        )

        return RevenueReport(
            from_date=from_date,
            to_date=to_date,
            currency=currency,
            invoices_count=len(invoices),
            total_invoiced=total_of("total_amount").amount,
            total_insurance=total_of("insurance_coverage").amount,
            total_discount=total_of("discount").amount,
            total_patient_due=total_of("patient_amount").amount,
            payments_count=payments_count,
            total_collected=total_collected.amount,
            collected_by_method=collected_by_method,
            total_outstanding=outstanding.amount,
        )


invoice_service = InvoiceService()

"""
Service Layer per Intervenienti e Provvigioni
Progetto: Clinic Ledger (Gestionale Clinica)

Gestione anagrafica degli intervenienti esterni e calcolo delle
provvigioni per periodo. Il calcolo è idempotente per chiave
(interveniente, fattura, prestazione, periodo): ricalcolare aggiorna la
provvigione 'due', mentre una provvigione 'paid' non viene mai toccata.
"""

import logging
import uuid
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import Select, and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import advisory_xact_lock, commit_or_conflict
from app.core.exceptions import BusinessValidationError, InvalidAmount, InvalidState, NotFoundError
from app.core.money import Money
from app.core.permissions import Capability, OperationContext
from app.models import Commission, Invoice, Practitioner
from app.schemas.commission import (
    CommissionBatch,
    CommissionCalculate,
    CommissionFilter,
    CommissionStatus,
    CommissionSummary,
    PractitionerCreate,
    PractitionerUpdate,
)
from app.schemas.invoice import InvoiceStatus
from app.services import ledger

logger = logging.getLogger(__name__)


def build_commission_query(filters: CommissionFilter) -> Select:
    """Compone la query delle provvigioni a partire dal filtro."""
    conditions = []

    if filters.period:
        conditions.append(Commission.period == filters.period)
    if filters.practitioner_id:
        conditions.append(Commission.practitioner_id == filters.practitioner_id)
    if filters.status:
        conditions.append(Commission.status == filters.status.value)

    stmt = select(Commission)
    if conditions:
        stmt = stmt.where(and_(*conditions))
    return stmt.order_by(Commission.period.desc(), Commission.calculated_at.desc())


class CommissionService:
    """
    Service per intervenienti e provvigioni.
    """

    # ------------------------------------------------------------
    # Intervenienti
    # ------------------------------------------------------------

    async def get_practitioners(self, db: AsyncSession, ctx: OperationContext) -> List[Practitioner]:
        """Recupera la lista degli intervenienti attivi."""
        ctx.require(Capability.COMMISSION_READ)
        query = (
            select(Practitioner)
            .where(Practitioner.is_active.is_(True))
            .order_by(Practitioner.last_name, Practitioner.first_name)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def _get_practitioner(self, db: AsyncSession, id: uuid.UUID) -> Practitioner:
        query = select(Practitioner).where(Practitioner.id == id, Practitioner.is_active.is_(True))
        result = await db.execute(query)
        practitioner = result.scalar_one_or_none()

        if not practitioner:
            raise NotFoundError(f"Interveniente {id} non trovato")

        return practitioner

    async def get_practitioner(self, db: AsyncSession, ctx: OperationContext, id: uuid.UUID) -> Practitioner:
        """Recupera il dettaglio di un interveniente."""
        ctx.require(Capability.COMMISSION_READ)
        return await self._get_practitioner(db, id)

    async def create_practitioner(
        self, db: AsyncSession, ctx: OperationContext, data: PractitionerCreate
    ) -> Practitioner:
        """
        Crea un interveniente.

        Raises:
            InvalidConfig: base provvigionale incoerente
        """
        ctx.require(Capability.COMMISSION_MANAGE)
        currency = (data.currency or settings.default_currency).upper()
        basis = ledger.commission_basis(data.commission_rate, data.commission_fixed_amount, currency)

        practitioner = Practitioner(
            **data.model_dump(exclude={"currency", "commission_rate", "commission_fixed_amount"}),
            currency=currency,
            commission_rate=basis.rate,
            commission_fixed_amount=basis.fixed_amount.amount if basis.fixed_amount else None,
        )
        db.add(practitioner)
        await commit_or_conflict(db, "Errore durante la creazione dell'interveniente")
        await db.refresh(practitioner)

        logger.info("Interveniente creato: %s %s", practitioner.first_name, practitioner.last_name)
        return practitioner

    async def update_practitioner(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        id: uuid.UUID,
        data: PractitionerUpdate,
    ) -> Practitioner:
        """
        Aggiorna un interveniente.

        Impostare una base provvigionale azzera l'altra, così la
        configurazione resta sempre coerente.
        """
        ctx.require(Capability.COMMISSION_MANAGE)
        practitioner = await self._get_practitioner(db, id)

        update_data = data.model_dump(exclude_unset=True)
        rate = practitioner.commission_rate
        fixed = practitioner.commission_fixed_amount
        if "commission_rate" in update_data:
            rate = update_data.pop("commission_rate")
            if rate is not None:
                fixed = None
        if "commission_fixed_amount" in update_data:
            fixed = update_data.pop("commission_fixed_amount")
            if fixed is not None:
                rate = None

        basis = ledger.commission_basis(rate, fixed, practitioner.currency)
        practitioner.commission_rate = basis.rate
        practitioner.commission_fixed_amount = basis.fixed_amount.amount if basis.fixed_amount else None

        for k, v in update_data.items():
            setattr(practitioner, k, v)

        await commit_or_conflict(db, "Errore durante l'aggiornamento dell'interveniente")
        await db.refresh(practitioner)
        return practitioner

    # ------------------------------------------------------------
    # Provvigioni
    # ------------------------------------------------------------

    async def _base_amount(
        self,
        db: AsyncSession,
        practitioner: Practitioner,
        invoice_id: Optional[uuid.UUID],
        base_amount: Optional[Decimal],
    ) -> Money:
        """
        Base di calcolo: importo esplicito se indicato, altrimenti il
        totale della fattura di riferimento.
        """
        currency = practitioner.currency
        invoice: Optional[Invoice] = None

        if invoice_id is not None:
            result = await db.execute(select(Invoice).where(Invoice.id == invoice_id))
            invoice = result.scalar_one_or_none()
            if not invoice:
                raise NotFoundError(f"Fattura {invoice_id} non trovata")
            if invoice.status == InvoiceStatus.CANCELLED.value:
                raise InvalidState(
                    f"La fattura {invoice.invoice_number} è annullata: nessuna provvigione calcolabile"
                )
            currency = invoice.currency

        if base_amount is not None:
            return Money.of(base_amount, currency)
        if invoice is None:
            raise InvalidAmount("Indicare la base di calcolo oppure la fattura di riferimento")
        return ledger.to_money(invoice.total_amount, currency)

    async def _find_by_key(
        self,
        db: AsyncSession,
        practitioner_id: uuid.UUID,
        invoice_id: Optional[uuid.UUID],
        service_id: Optional[uuid.UUID],
        period: str,
    ) -> Optional[Commission]:
        stmt = (
            select(Commission)
            .where(
                and_(
                    Commission.practitioner_id == practitioner_id,
                    Commission.invoice_id.is_not_distinct_from(invoice_id),
                    Commission.service_id.is_not_distinct_from(service_id),
                    Commission.period == period,
                )
            )
            .with_for_update()
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def _calculate(
        self,
        db: AsyncSession,
        practitioner_id: uuid.UUID,
        period: str,
        invoice_id: Optional[uuid.UUID],
        service_id: Optional[uuid.UUID],
        base_amount: Optional[Decimal],
    ) -> Commission:
        """
        Calcola (o ricalcola) la provvigione per una chiave.

        Raises:
            AlreadyFinalized: la provvigione della chiave è già pagata
        """
        ledger.check_period(period)
        practitioner = await self._get_practitioner(db, practitioner_id)
        base = await self._base_amount(db, practitioner, invoice_id, base_amount)

        await advisory_xact_lock(
            db, "commission", f"{practitioner_id}:{invoice_id}:{service_id}:{period}"
        )

        fresh = ledger.calculate_commission(
            practitioner, base, period, invoice_id=invoice_id, service_id=service_id
        )
        existing = await self._find_by_key(db, practitioner_id, invoice_id, service_id, period)
        if existing is not None:
            return ledger.refresh_commission(existing, fresh)

        db.add(fresh)
        return fresh

    async def calculate_for_invoice(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        data: CommissionCalculate,
    ) -> Commission:
        """
        Calcola la provvigione di un interveniente per una fattura o prestazione.

        Raises:
            InvalidConfig: base provvigionale incoerente
            InvalidState: fattura annullata
            AlreadyFinalized: provvigione della stessa chiave già pagata
        """
        ctx.require(Capability.COMMISSION_MANAGE)
        commission = await self._calculate(
            db,
            data.practitioner_id,
            data.period,
            data.invoice_id,
            data.service_id,
            data.base_amount,
        )
        await commit_or_conflict(db, "Provvigione già calcolata da un'altra operazione")

        logger.info(
            "Provvigione %s calcolata per %s (%s): %s su base %s",
            commission.id,
            commission.practitioner_id,
            commission.period,
            commission.commission_amount,
            commission.base_amount,
        )
        return commission

    async def calculate_period(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        batch: CommissionBatch,
    ) -> List[Commission]:
        """
        Calcola in blocco le provvigioni di un periodo.

        Tutto o niente: se una voce fallisce (es. provvigione già pagata)
        nessuna provvigione del blocco viene salvata.

        Raises:
            AlreadyFinalized: una delle voci è già pagata
        """
        ctx.require(Capability.COMMISSION_MANAGE)

        keys = [(e.practitioner_id, e.invoice_id, e.service_id) for e in batch.entries]
        if len(set(keys)) != len(keys):
            raise BusinessValidationError(
                "Voci duplicate nel calcolo del periodo",
                error_code="DUPLICATE_COMMISSION_ENTRY",
            )

        commissions: List[Commission] = []
        try:
            for entry in batch.entries:
                commissions.append(
                    await self._calculate(
                        db,
                        entry.practitioner_id,
                        batch.period,
                        entry.invoice_id,
                        entry.service_id,
                        entry.base_amount,
                    )
                )
        except Exception:
            await db.rollback()
            logger.warning("Calcolo provvigioni del periodo %s annullato", batch.period)
            raise

        await commit_or_conflict(db, "Provvigioni del periodo modificate da un'altra operazione")
        logger.info("Calcolate %d provvigioni per il periodo %s", len(commissions), batch.period)
        return commissions

    async def mark_paid(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        commission_id: uuid.UUID,
    ) -> Commission:
        """
        Segna una provvigione come pagata (stato definitivo).

        Raises:
            NotFoundError: provvigione inesistente
            InvalidState: provvigione non in stato 'due'
        """
        ctx.require(Capability.COMMISSION_MANAGE)
        stmt = (
            select(Commission)
            .where(Commission.id == commission_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        commission = result.scalar_one_or_none()
        if not commission:
            raise NotFoundError(f"Provvigione {commission_id} non trovata")

        ledger.mark_commission_paid(commission)
        await commit_or_conflict(db, "La provvigione è stata modificata da un'altra operazione")

        logger.info("Provvigione %s pagata: %s %s", commission.id, commission.commission_amount, commission.currency)
        return commission

    async def get_all(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        filters: CommissionFilter,
        skip: int = 0,
        limit: int = 100,
    ) -> Sequence[Commission]:
        """Lista delle provvigioni per periodo, interveniente o stato."""
        ctx.require(Capability.COMMISSION_READ)
        stmt = build_commission_query(filters).offset(skip).limit(limit)
        result = await db.execute(stmt)
        return result.scalars().all()

    async def get_summary(
        self,
        db: AsyncSession,
        ctx: OperationContext,
        period: str,
    ) -> List[CommissionSummary]:
        """Totali da pagare e pagati per interveniente nel periodo."""
        ctx.require(Capability.COMMISSION_READ)
        ledger.check_period(period)

        stmt = (
            select(
                Commission.practitioner_id,
                Commission.currency,
                Commission.status,
                func.count(Commission.id),
                func.coalesce(func.sum(Commission.commission_amount), 0),
            )
            .where(Commission.period == period)
            .group_by(Commission.practitioner_id, Commission.currency, Commission.status)
        )
        rows = (await db.execute(stmt)).all()

        summaries: dict[tuple[uuid.UUID, str], CommissionSummary] = {}
        for practitioner_id, currency, status, count, amount in rows:
            summary = summaries.setdefault(
                (practitioner_id, currency),
                CommissionSummary(
                    practitioner_id=practitioner_id,
                    period=period,
                    currency=currency,
                    total_due=Decimal("0"),
                    total_paid=Decimal("0"),
                    commissions_count=0,
                ),
            )
            total = Money.rounded(amount, currency).amount
            if status == CommissionStatus.PAID.value:
                summary.total_paid += total
            else:
                summary.total_due += total
            summary.commissions_count += count

        return list(summaries.values())


commission_service = CommissionService()

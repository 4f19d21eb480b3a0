"""
Service Layer per le Sessioni di Cassa
Progetto: Clinic Ledger (Gestionale Clinica)

Apertura e chiusura della cassa di un operatore. Apertura e chiusura
dello stesso operatore sono serializzate da un advisory lock; l'indice
unico parziale sulle sessioni aperte resta l'ultima garanzia.
"""

import logging
import uuid
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import Select, and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import advisory_xact_lock, commit_or_conflict
from app.core.exceptions import AlreadyOpen, AuthorizationError, NotFoundError
from app.core.money import Money
from app.core.permissions import Capability, OperationContext
from app.models.cash_session import CashSession
from app.schemas.cash_session import CashSessionFilter
from app.services import ledger
from app.utils.dates import day_bounds

logger = logging.getLogger(__name__)


def build_cash_session_query(filters: CashSessionFilter) -> Select:
    """Compone la query dello storico sessioni a partire dal filtro."""
    conditions = []

    if filters.actor_id:
        conditions.append(CashSession.actor_id == filters.actor_id)
    if filters.is_open is not None:
        conditions.append(CashSession.is_open == filters.is_open)

    lower, upper = day_bounds(filters.from_date, filters.to_date)
    if lower is not None:
        conditions.append(CashSession.opened_at >= lower)
    if upper is not None:
        conditions.append(CashSession.opened_at < upper)

    stmt = select(CashSession)
    if conditions:
        stmt = stmt.where(and_(*conditions))
    return stmt.order_by(CashSession.opened_at.desc())


class CashSessionService:
    @staticmethod
    async def find_open(
        actor_id: uuid.UUID, db: AsyncSession, for_update: bool = False
    ) -> Optional[CashSession]:
        """Sessione aperta dell'operatore, se esiste."""
        stmt = select(CashSession).where(
            and_(CashSession.actor_id == actor_id, CashSession.is_open.is_(True))
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        res = await db.execute(stmt)
        return res.scalar_one_or_none()

    @staticmethod
    async def open(
        ctx: OperationContext,
        opening_balance: Decimal,
        currency: Optional[str],
        notes: Optional[str],
        db: AsyncSession,
    ) -> CashSession:
        """
        Apre la cassa dell'operatore.

        Raises:
            AlreadyOpen: l'operatore ha già una sessione aperta
            InvalidAmount: fondo iniziale negativo
        """
        ctx.require(Capability.CASH_SESSION_OPERATE)
        balance = Money.of(opening_balance, (currency or settings.default_currency).upper())

        await advisory_xact_lock(db, "cash_session", ctx.actor_id)

        if await CashSessionService.find_open(ctx.actor_id, db) is not None:
            raise AlreadyOpen("Esiste già una sessione di cassa aperta per questo operatore")

        session = ledger.open_cash_session(ctx.actor_id, balance, notes)
        db.add(session)
        await commit_or_conflict(
            db,
            "Esiste già una sessione di cassa aperta per questo operatore",
            error_cls=AlreadyOpen,
        )

        logger.info("Cassa aperta da %s con fondo %s", ctx.actor_id, balance)
        return session

    @staticmethod
    async def close(
        ctx: OperationContext,
        session_id: uuid.UUID,
        closing_balance: Decimal,
        notes: Optional[str],
        db: AsyncSession,
    ) -> CashSession:
        """
        Chiude una sessione calcolando saldo atteso e differenza.

        Solo il titolare o un supervisore possono chiudere la sessione.

        Raises:
            NotFoundError: sessione inesistente
            AuthorizationError: sessione di un altro operatore
            AlreadyClosed: sessione già chiusa
            InvalidAmount: saldo di chiusura negativo
        """
        ctx.require(Capability.CASH_SESSION_OPERATE)

        stmt = (
            select(CashSession)
            .where(CashSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        res = await db.execute(stmt)
        session = res.scalar_one_or_none()
        if not session:
            raise NotFoundError(f"Sessione di cassa {session_id} non trovata")

        if session.actor_id != ctx.actor_id and not ctx.is_supervisor:
            raise AuthorizationError("Solo il titolare o un supervisore possono chiudere la sessione")

        variance = ledger.close_cash_session(
            session, Money.of(closing_balance, session.currency), notes
        )
        await commit_or_conflict(db, "La sessione di cassa è stata modificata da un'altra operazione")

        if variance.is_zero:
            logger.info("Cassa %s chiusa senza differenze (atteso %s)", session.id, session.expected_balance)
        else:
            logger.warning(
                "Cassa %s chiusa con differenza %s (atteso %s, contato %s)",
                session.id,
                variance,
                session.expected_balance,
                session.closing_balance,
            )
        return session

    @staticmethod
    async def get_current(ctx: OperationContext, db: AsyncSession) -> CashSession:
        """Sessione aperta dell'operatore corrente."""
        ctx.require(Capability.CASH_SESSION_OPERATE)
        session = await CashSessionService.find_open(ctx.actor_id, db)
        if not session:
            raise NotFoundError("Nessuna sessione di cassa aperta")
        return session

    @staticmethod
    async def get_by_id(ctx: OperationContext, session_id: uuid.UUID, db: AsyncSession) -> CashSession:
        ctx.require(Capability.CASH_SESSION_OPERATE)
        res = await db.execute(select(CashSession).where(CashSession.id == session_id))
        session = res.scalar_one_or_none()
        if not session:
            raise NotFoundError(f"Sessione di cassa {session_id} non trovata")
        return session

    @staticmethod
    async def get_history(
        ctx: OperationContext,
        filters: CashSessionFilter,
        db: AsyncSession,
        skip: int = 0,
        limit: int = 50,
    ) -> Sequence[CashSession]:
        """Storico delle sessioni; un cassiere vede solo le proprie."""
        ctx.require(Capability.CASH_SESSION_OPERATE)
        if not ctx.is_supervisor:
            filters = filters.model_copy(update={"actor_id": ctx.actor_id})

        stmt = build_cash_session_query(filters).offset(skip).limit(limit)
        res = await db.execute(stmt)
        return res.scalars().all()

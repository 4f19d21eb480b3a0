import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.invoice import Payment


class CashSession(Base, UUIDMixin, TimestampMixin):
    """
    Sessione di cassa di un operatore, dall'apertura alla chiusura.

    expected_balance e variance restano NULL finché la sessione è aperta:
    vengono calcolati dal registro alla chiusura a partire da cash_total.
    """
    __tablename__ = "cash_sessions"

    actor_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, doc="Operatore titolare")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    opening_balance: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    cash_total: Mapped[Decimal] = mapped_column(
        Numeric(12, 3), nullable=False, default=Decimal("0"), doc="Incassi in contanti della sessione"
    )
    closing_balance: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 3), nullable=True)
    expected_balance: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 3), nullable=True)
    variance: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 3), nullable=True)

    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    payments: Mapped[List["Payment"]] = relationship(
        "Payment", back_populates="cash_session", lazy="noload"
    )

    __table_args__ = (
        # Al massimo una sessione aperta per operatore
        Index(
            "uq_cash_sessions_open_actor",
            "actor_id",
            unique=True,
            postgresql_where=text("is_open"),
        ),
        Index("ix_cash_sessions_opened_at", "opened_at"),
        CheckConstraint("opening_balance >= 0", name="ck_cash_sessions_opening_positive"),
        CheckConstraint(
            "is_open OR (closed_at IS NOT NULL AND closing_balance IS NOT NULL "
            "AND expected_balance IS NOT NULL AND variance IS NOT NULL)",
            name="ck_cash_sessions_closed_fields",
        ),
    )

    def __repr__(self) -> str:
        return f"CashSession(actor_id={self.actor_id!r}, is_open={self.is_open!r})"

"""
Modelli SQLAlchemy per Intervenienti e Provvigioni
Progetto: Clinic Ledger (Gestionale Clinica)
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import SoftDeleteMixin, TimestampMixin, UUIDMixin


class Practitioner(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    """
    Interveniente esterno remunerato a provvigione.

    La base provvigionale è una sola: percentuale (commission_rate)
    oppure importo fisso (commission_fixed_amount).
    """
    __tablename__ = "practitioners"

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    specialty: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    commission_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    commission_fixed_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 3), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    commissions: Mapped[List["Commission"]] = relationship(
        "Commission", back_populates="practitioner", lazy="noload"
    )

    __table_args__ = (
        CheckConstraint(
            "commission_rate IS NULL OR (commission_rate >= 0 AND commission_rate <= 100)",
            name="ck_practitioners_rate_range",
        ),
        CheckConstraint(
            "commission_fixed_amount IS NULL OR commission_fixed_amount >= 0",
            name="ck_practitioners_fixed_positive",
        ),
    )

    def __repr__(self) -> str:
        return f"Practitioner(first_name={self.first_name!r}, last_name={self.last_name!r})"


class Commission(Base, UUIDMixin, TimestampMixin):
    """
    Provvigione calcolata per (interveniente, fattura/prestazione, periodo).

    Una provvigione 'paid' è definitiva: il ricalcolo dello stesso
    periodo non può sovrascriverla.
    """
    __tablename__ = "commissions"

    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("practitioners.id", ondelete="RESTRICT"), nullable=False
    )
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=True
    )
    service_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    base_amount: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    fixed_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 3), nullable=True)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)

    period: Mapped[str] = mapped_column(String(7), nullable=False, doc="YYYY-MM")
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="due")
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    practitioner: Mapped["Practitioner"] = relationship("Practitioner", back_populates="commissions")

    __table_args__ = (
        Index(
            "uq_commissions_key",
            "practitioner_id",
            "invoice_id",
            "service_id",
            "period",
            unique=True,
            postgresql_nulls_not_distinct=True,
        ),
        Index("ix_commissions_period", "period"),
        CheckConstraint("base_amount >= 0", name="ck_commissions_base_positive"),
        CheckConstraint("status IN ('due', 'paid')", name="ck_commissions_status"),
        CheckConstraint(
            "(status = 'paid') = (paid_at IS NOT NULL)",
            name="ck_commissions_paid_at",
        ),
    )

    def __repr__(self) -> str:
        return f"Commission(practitioner_id={self.practitioner_id!r}, period={self.period!r}, status={self.status!r})"

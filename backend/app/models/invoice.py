"""
Modelli SQLAlchemy per la Fatturazione
Progetto: Clinic Ledger (Gestionale Clinica)

Contiene:
- Invoice: Fattura paziente con copertura assicurativa e sconto
- InvoiceItem: Righe della fattura (prestazioni, farmaci)
- Payment: Pagamenti applicati alla fattura
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.cash_session import CashSession


class Invoice(Base, UUIDMixin, TimestampMixin):
    """
    Modello per le fatture paziente.

    Attributes:
        id: UUID primary key, generato automaticamente
        invoice_number: Numero univoco (formato: PREFISSO-ANNO-NNNNNN)
        patient_id: UUID del paziente (anagrafica esterna)
        consultation_id: UUID della consultazione di origine (opzionale)
        currency: Valuta ISO 4217
        total_amount: Totale fattura, fissato alla creazione
        insurance_coverage: Quota coperta dall'assicurazione (0 <= copertura <= totale)
        discount: Sconto applicato prima del calcolo del dovuto
        patient_amount: Dovuto dal paziente = totale - copertura - sconto
        status: draft, validated, partially_paid, paid, cancelled
        invoice_date: Data/ora di emissione
        due_date: Data scadenza pagamento
        created_by: UUID dell'utente che ha creato la fattura
        validated_at / cancelled_at: Timestamp delle transizioni
        version: Contatore per il controllo di concorrenza ottimistico

    Relationships:
        items: Righe della fattura
        payments: Pagamenti applicati
    """

    __tablename__ = "invoices"

    invoice_number: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        unique=True,
        doc="Numero fattura univoco",
    )

    patient_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, doc="UUID del paziente")
    consultation_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    # ------------------------------------------------------------
    # Importi
    # ------------------------------------------------------------
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    insurance_coverage: Mapped[Decimal] = mapped_column(
        Numeric(12, 3), nullable=False, default=Decimal("0")
    )
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False, default=Decimal("0"))
    patient_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 3),
        nullable=False,
        doc="Denormalizzato per le query: sempre totale - copertura - sconto",
    )

    # ------------------------------------------------------------
    # Stato e date
    # ------------------------------------------------------------
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    invoice_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceItem.line_number",
    )

    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="invoice",
        lazy="selectin",
        order_by="Payment.payment_date",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_invoices_patient_id", "patient_id"),
        Index("ix_invoices_invoice_date", "invoice_date"),
        Index("ix_invoices_status", "status"),
        CheckConstraint("total_amount >= 0", name="ck_invoices_total_positive"),
        CheckConstraint(
            "insurance_coverage >= 0 AND insurance_coverage <= total_amount",
            name="ck_invoices_coverage_range",
        ),
        CheckConstraint("discount >= 0", name="ck_invoices_discount_positive"),
        CheckConstraint(
            "patient_amount = total_amount - insurance_coverage - discount AND patient_amount >= 0",
            name="ck_invoices_patient_amount",
        ),
        CheckConstraint(
            "status IN ('draft', 'validated', 'partially_paid', 'paid', 'cancelled')",
            name="ck_invoices_status",
        ),
    )

    @property
    def paid_amount(self) -> Decimal:
        """Somma dei pagamenti applicati."""
        return sum((p.amount for p in self.payments), Decimal("0"))

    def __repr__(self) -> str:
        return f"<Invoice(number={self.invoice_number}, total={self.total_amount}, status={self.status})>"


class InvoiceItem(Base, UUIDMixin, TimestampMixin):
    """
    Riga fattura proveniente dal catalogo prestazioni/farmaci.

    La copertura assicurativa della riga non può superare il totale riga.
    """

    __tablename__ = "invoice_items"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    service_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    medication_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    insurance_coverage: Mapped[Decimal] = mapped_column(
        Numeric(12, 3), nullable=False, default=Decimal("0")
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    __table_args__ = (
        Index("ix_invoice_items_invoice_line", "invoice_id", "line_number", unique=True),
        CheckConstraint("quantity > 0", name="ck_invoice_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_invoice_items_unit_price_positive"),
        CheckConstraint(
            "insurance_coverage >= 0 AND insurance_coverage <= total_price",
            name="ck_invoice_items_coverage_range",
        ),
    )

    def __repr__(self) -> str:
        return f"<InvoiceItem(line={self.line_number}, description={self.description!r})>"


class Payment(Base, UUIDMixin, TimestampMixin):
    """
    Pagamento applicato a una sola fattura.

    Attributes:
        invoice_id: UUID della fattura pagata
        amount: Importo (> 0)
        method: cash, card, check, transfer, mobile_money
        reference: Riferimento transazione (obbligatorio se non contanti)
        received_by: UUID dell'operatore che ha registrato il pagamento
        payment_date: Data/ora del pagamento
        cash_session_id: Sessione di cassa che ha assorbito l'incasso in contanti
    """

    __tablename__ = "payments"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    received_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    payment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    cash_session_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("cash_sessions.id", ondelete="RESTRICT"), nullable=True
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="payments")
    cash_session: Mapped[Optional["CashSession"]] = relationship(
        "CashSession", back_populates="payments"
    )

    __table_args__ = (
        Index("ix_payments_invoice_id", "invoice_id"),
        Index("ix_payments_payment_date", "payment_date"),
        Index("ix_payments_received_by", "received_by"),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint(
            "method IN ('cash', 'card', 'check', 'transfer', 'mobile_money')",
            name="ck_payments_method",
        ),
        CheckConstraint(
            "method = 'cash' OR (reference IS NOT NULL AND reference <> '')",
            name="ck_payments_reference_required",
        ),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, amount={self.amount}, method={self.method})>"

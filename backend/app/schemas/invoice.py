"""
Schemas Pydantic per la Fatturazione
Progetto: Clinic Ledger (Gestionale Clinica)

Contiene:
- Enums: PaymentMethod, InvoiceStatus
- Schemas per InvoiceItem
- Schemas per Payment
- Schemas per Invoice
- Oggetti filtro per le liste
- Schema per il report incassi
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    model_validator,
)

from app.core.exceptions import BusinessValidationError


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class PaymentMethod(str, Enum):
    """Metodi di pagamento supportati."""
    CASH = "cash"
    CARD = "card"
    CHECK = "check"
    TRANSFER = "transfer"
    MOBILE_MONEY = "mobile_money"


class InvoiceStatus(str, Enum):
    """Stato della fattura (macchina a stati del registro)."""
    DRAFT = "draft"
    VALIDATED = "validated"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    CANCELLED = "cancelled"


TERMINAL_INVOICE_STATUSES = frozenset({InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value})


# -------------------------------------------------------------------
# Schemas per InvoiceItem
# -------------------------------------------------------------------

class InvoiceItemBase(BaseModel):
    """Riga fattura proveniente dal catalogo prestazioni/farmaci."""

    description: str = Field(..., min_length=1, max_length=255, description="Descrizione della riga")
    service_id: Optional[uuid.UUID] = Field(None, description="UUID prestazione a catalogo")
    medication_id: Optional[uuid.UUID] = Field(None, description="UUID farmaco a catalogo")
    quantity: int = Field(..., description="Quantità")
    unit_price: Decimal = Field(..., description="Prezzo unitario")
    insurance_coverage: Decimal = Field(
        default=Decimal("0"),
        description="Quota della riga coperta dall'assicurazione",
    )

    model_config = ConfigDict(from_attributes=True)


class InvoiceItemCreate(InvoiceItemBase):
    """Schema per la creazione di una riga fattura."""
    pass


class InvoiceItemRead(InvoiceItemBase):
    """Schema per la lettura di una riga fattura."""

    id: uuid.UUID = Field(..., description="UUID della riga")
    invoice_id: uuid.UUID = Field(..., description="UUID della fattura")
    total_price: Decimal = Field(..., description="Totale riga (quantità x prezzo)")


# -------------------------------------------------------------------
# Schemas per Payment
# -------------------------------------------------------------------

class PaymentCreate(BaseModel):
    """
    Schema per registrare un pagamento su una fattura.

    Le regole (importo positivo, riferimento obbligatorio, non superare
    il dovuto) sono verificate dal registro, che restituisce errori di
    dominio distinti.
    """

    amount: Decimal = Field(..., description="Importo del pagamento")
    method: PaymentMethod = Field(..., description="Metodo di pagamento")
    reference: Optional[str] = Field(
        None,
        max_length=100,
        description="Riferimento (n. transazione, n. assegno, ...); obbligatorio se non contanti",
    )
    notes: Optional[str] = Field(None, description="Note sul pagamento")


class PaymentRead(BaseModel):
    """Schema per leggere un pagamento registrato."""

    id: uuid.UUID
    invoice_id: uuid.UUID
    amount: Decimal
    method: PaymentMethod
    reference: Optional[str]
    notes: Optional[str]
    received_by: uuid.UUID
    payment_date: datetime
    cash_session_id: Optional[uuid.UUID]

    model_config = ConfigDict(from_attributes=True)


class PaymentFilter(BaseModel):
    """Filtro esplicito per la ricerca dei pagamenti."""

    invoice_id: Optional[uuid.UUID] = None
    received_by: Optional[uuid.UUID] = None
    method: Optional[PaymentMethod] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None


# -------------------------------------------------------------------
# Schemas per Invoice
# -------------------------------------------------------------------

class InvoiceCreate(BaseModel):
    """
    Schema per la creazione di una fattura.

    Il totale può essere indicato esplicitamente oppure derivato dalle
    righe; se entrambi sono presenti devono coincidere.
    """

    patient_id: uuid.UUID = Field(..., description="UUID del paziente")
    consultation_id: Optional[uuid.UUID] = Field(None, description="UUID della consultazione")
    currency: Optional[str] = Field(
        None,
        min_length=3,
        max_length=3,
        description="Valuta ISO 4217 (default: valuta della clinica)",
    )
    total_amount: Optional[Decimal] = Field(None, description="Totale fattura")
    insurance_coverage: Optional[Decimal] = Field(None, description="Quota coperta dall'assicurazione")
    discount: Decimal = Field(default=Decimal("0"), description="Sconto applicato")
    due_date: Optional[date] = Field(None, description="Data scadenza pagamento")
    notes: Optional[str] = Field(None, description="Note interne")
    items: list[InvoiceItemCreate] = Field(default_factory=list, description="Righe della fattura")

    @model_validator(mode="after")
    def validate_total_source(self) -> "InvoiceCreate":
        """Serve almeno un totale esplicito o una riga."""
        if self.total_amount is None and not self.items:
            raise BusinessValidationError(
                "Indicare il totale della fattura oppure almeno una riga"
            )
        return self


class InvoiceCancel(BaseModel):
    """Richiesta di annullamento fattura."""

    reason: Optional[str] = Field(None, max_length=255, description="Motivo dell'annullamento")


class InvoiceRead(BaseModel):
    """Schema per la lettura di una fattura."""

    id: uuid.UUID
    invoice_number: str
    patient_id: uuid.UUID
    consultation_id: Optional[uuid.UUID]
    currency: str
    total_amount: Decimal
    insurance_coverage: Decimal
    discount: Decimal
    patient_amount: Decimal = Field(..., description="Totale - copertura - sconto")
    status: InvoiceStatus
    invoice_date: datetime
    due_date: Optional[date]
    notes: Optional[str]
    created_by: uuid.UUID
    validated_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]

    items: list[InvoiceItemRead] = Field(default_factory=list)
    payments: list[PaymentRead] = Field(default_factory=list)

    @computed_field
    @property
    def paid_amount(self) -> Decimal:
        """Somma dei pagamenti registrati."""
        return sum((p.amount for p in self.payments), Decimal("0"))

    @computed_field
    @property
    def remaining_amount(self) -> Decimal:
        """Importo residuo a carico del paziente."""
        return self.patient_amount - self.paid_amount

    model_config = ConfigDict(from_attributes=True)


class InvoiceFilter(BaseModel):
    """
    Filtro esplicito per la lista fatture.

    Viene costruito una sola volta dal router e passato intero alla
    funzione che compone la query.
    """

    patient_id: Optional[uuid.UUID] = None
    status: Optional[InvoiceStatus] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    created_by: Optional[uuid.UUID] = None


class InvoiceList(BaseModel):
    """Schema per la lista paginata delle fatture."""

    items: list[InvoiceRead] = Field(default_factory=list)
    total: int = Field(..., description="Numero totale di fatture")
    page: int = Field(..., description="Pagina corrente")
    per_page: int = Field(..., description="Elementi per pagina")
    total_pages: int = Field(..., description="Numero totale di pagine")


# -------------------------------------------------------------------
# Schemas per Report
# -------------------------------------------------------------------

class RevenueReport(BaseModel):
    """Report finanziario del periodo (fatture non annullate)."""

    from_date: date
    to_date: date
    currency: str
    invoices_count: int
    total_invoiced: Decimal = Field(..., description="Somma dei totali fattura")
    total_insurance: Decimal = Field(..., description="Quota coperta dalle assicurazioni")
    total_discount: Decimal = Field(..., description="Sconti concessi")
    total_patient_due: Decimal = Field(..., description="Quota a carico dei pazienti")
    payments_count: int
    total_collected: Decimal = Field(..., description="Incassato nel periodo")
    collected_by_method: dict[PaymentMethod, Decimal] = Field(default_factory=dict)
    total_outstanding: Decimal = Field(..., description="Residuo da incassare sulle fatture del periodo")

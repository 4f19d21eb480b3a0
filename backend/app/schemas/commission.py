"""
Schemas Pydantic per Intervenienti e Provvigioni
Progetto: Clinic Ledger (Gestionale Clinica)
"""

import datetime
import uuid
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

PERIOD_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class CommissionStatus(str, Enum):
    """Stato della provvigione."""
    DUE = "due"
    PAID = "paid"


# -------------------------------------------------------------------
# Intervenienti esterni
# -------------------------------------------------------------------

class PractitionerBase(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100, description="Nome")
    last_name: str = Field(..., min_length=1, max_length=100, description="Cognome")
    specialty: Optional[str] = Field(None, max_length=100, description="Specialità")
    phone: Optional[str] = Field(None, max_length=20, description="Telefono")
    email: Optional[str] = Field(None, max_length=255, description="Email")
    commission_rate: Optional[Decimal] = Field(None, description="Percentuale provvigione (0-100)")
    commission_fixed_amount: Optional[Decimal] = Field(None, description="Provvigione fissa per prestazione")
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="Valuta dell'importo fisso")


class PractitionerCreate(PractitionerBase):
    pass


class PractitionerUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    specialty: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=255)
    commission_rate: Optional[Decimal] = None
    commission_fixed_amount: Optional[Decimal] = None
    is_active: Optional[bool] = None


class PractitionerRead(PractitionerBase):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    currency: str
    is_active: bool
    created_at: datetime.datetime
    updated_at: datetime.datetime


# -------------------------------------------------------------------
# Provvigioni
# -------------------------------------------------------------------

class CommissionCalculate(BaseModel):
    """Richiesta di calcolo provvigione per una fattura o prestazione."""

    practitioner_id: uuid.UUID
    period: str = Field(..., pattern=PERIOD_PATTERN, description="Periodo di competenza (YYYY-MM)")
    invoice_id: Optional[uuid.UUID] = Field(None, description="Fattura di riferimento")
    service_id: Optional[uuid.UUID] = Field(None, description="Prestazione di riferimento")
    base_amount: Optional[Decimal] = Field(
        None,
        description="Base di calcolo (default: totale della fattura)",
    )


class CommissionBatchEntry(BaseModel):
    practitioner_id: uuid.UUID
    invoice_id: Optional[uuid.UUID] = None
    service_id: Optional[uuid.UUID] = None
    base_amount: Optional[Decimal] = None


class CommissionBatch(BaseModel):
    """Calcolo in blocco per un periodo: tutto o niente."""

    period: str = Field(..., pattern=PERIOD_PATTERN)
    entries: list[CommissionBatchEntry] = Field(..., min_length=1)


class CommissionRead(BaseModel):
    id: uuid.UUID
    practitioner_id: uuid.UUID
    invoice_id: Optional[uuid.UUID]
    service_id: Optional[uuid.UUID]
    currency: str
    base_amount: Decimal
    commission_rate: Optional[Decimal]
    fixed_amount: Optional[Decimal]
    commission_amount: Decimal
    period: str
    status: CommissionStatus
    calculated_at: datetime.datetime
    paid_at: Optional[datetime.datetime]

    model_config = ConfigDict(from_attributes=True)


class CommissionFilter(BaseModel):
    period: Optional[str] = None
    practitioner_id: Optional[uuid.UUID] = None
    status: Optional[CommissionStatus] = None


class CommissionSummary(BaseModel):
    """Totali provvigioni di un periodo per interveniente."""

    practitioner_id: uuid.UUID
    period: str
    currency: str
    total_due: Decimal
    total_paid: Decimal
    commissions_count: int

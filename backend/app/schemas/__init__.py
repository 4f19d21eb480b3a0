"""
Schemas Pydantic per il progetto Clinic Ledger

Questo modulo contiene tutti gli schemi Pydantic utilizzati per la validazione
e serializzazione delle richieste e risposte API.
"""

# Import degli schemi per renderli disponibili tramite import diretto
# es: from app.schemas import InvoiceRead, PaymentCreate, etc.

from app.schemas.token import TokenPayload
from app.schemas.invoice import (
    PaymentMethod,
    InvoiceStatus,
    InvoiceItemCreate,
    InvoiceItemRead,
    PaymentCreate,
    PaymentRead,
    PaymentFilter,
    InvoiceCreate,
    InvoiceCancel,
    InvoiceRead,
    InvoiceFilter,
    InvoiceList,
    RevenueReport,
)
from app.schemas.cash_session import (
    CashSessionOpen,
    CashSessionClose,
    CashSessionRead,
    CashSessionFilter,
)
from app.schemas.commission import (
    CommissionStatus,
    PractitionerCreate,
    PractitionerUpdate,
    PractitionerRead,
    CommissionCalculate,
    CommissionBatchEntry,
    CommissionBatch,
    CommissionRead,
    CommissionFilter,
    CommissionSummary,
)

__all__ = [
    # Token schemas
    "TokenPayload",
    # Invoice schemas
    "PaymentMethod",
    "InvoiceStatus",
    "InvoiceItemCreate",
    "InvoiceItemRead",
    "PaymentCreate",
    "PaymentRead",
    "PaymentFilter",
    "InvoiceCreate",
    "InvoiceCancel",
    "InvoiceRead",
    "InvoiceFilter",
    "InvoiceList",
    "RevenueReport",
    # Cash session schemas
    "CashSessionOpen",
    "CashSessionClose",
    "CashSessionRead",
    "CashSessionFilter",
    # Commission schemas
    "CommissionStatus",
    "PractitionerCreate",
    "PractitionerUpdate",
    "PractitionerRead",
    "CommissionCalculate",
    "CommissionBatchEntry",
    "CommissionBatch",
    "CommissionRead",
    "CommissionFilter",
    "CommissionSummary",
]

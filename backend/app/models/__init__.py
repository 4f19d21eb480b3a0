"""
Modelli Database SQLAlchemy
Progetto: Clinic Ledger (Gestionale Clinica)

Import centralizzato di tutti i modelli del registro fatture e pagamenti.

Modelli:
- Invoice: Fatture paziente
- InvoiceItem: Righe fattura (prestazioni, farmaci)
- Payment: Pagamenti applicati alle fatture
- CashSession: Sessioni di cassa per operatore
- Practitioner: Intervenienti esterni con base provvigionale
- Commission: Provvigioni calcolate per periodo
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


from app.models.invoice import Invoice, InvoiceItem, Payment
from app.models.cash_session import CashSession
from app.models.commission import Commission, Practitioner

__all__ = [
    "Base",
    "Invoice",
    "InvoiceItem",
    "Payment",
    "CashSession",
    "Practitioner",
    "Commission",
]

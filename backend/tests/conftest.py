"""
Pytest configuration and fixtures per i test del registro.

I service vengono testati contro un mock di AsyncSession; le regole
del registro su istanze transienti dei modelli (nessun database).
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.money import Money
from app.core.permissions import OperationContext, UserRole
from app.models import Commission, Invoice, Practitioner
from app.services import ledger


# ============================================================
# Fixtures per AsyncSession Mock
# ============================================================


@pytest.fixture
def mock_db():
    """Crea un mock di AsyncSession."""
    db = AsyncMock(spec=AsyncSession)
    db.execute = AsyncMock()
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    return db


def result_of(value: Any = None, scalars: Optional[list] = None, rows: Optional[list] = None) -> MagicMock:
    """
    Simula il Result restituito da db.execute.

    Args:
        value: valore di scalar_one_or_none() / scalar()
        scalars: lista restituita da scalars().all()
        rows: lista restituita da all()
    """
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar.return_value = value
    result.scalars.return_value.all.return_value = scalars if scalars is not None else []
    result.all.return_value = rows if rows is not None else []
    return result


# ============================================================
# Fixtures per il contesto dell'operazione
# ============================================================


def make_context(role: UserRole, actor_id: Optional[uuid.UUID] = None) -> OperationContext:
    return OperationContext(actor_id=actor_id or uuid.uuid4(), role=role)


@pytest.fixture
def supervisor_ctx():
    return make_context(UserRole.SUPERVISOR)


@pytest.fixture
def cashier_ctx():
    return make_context(UserRole.CASHIER)


@pytest.fixture
def accountant_ctx():
    return make_context(UserRole.ACCOUNTANT)


@pytest.fixture
def secretary_ctx():
    return make_context(UserRole.SECRETARY)


@pytest.fixture
def doctor_ctx():
    return make_context(UserRole.DOCTOR)


# ============================================================
# Fabbriche di modelli transienti
# ============================================================


NOW = datetime(2025, 3, 14, 10, 30, tzinfo=timezone.utc)


def make_invoice(
    total: str = "100.00",
    coverage: str = "0",
    discount: str = "0",
    currency: str = "EUR",
    status: Optional[str] = None,
    invoice_number: str = "F-2025-000001",
) -> Invoice:
    """Fattura in bozza costruita con le regole del registro."""
    invoice = ledger.build_invoice(
        invoice_number=invoice_number,
        patient_id=uuid.uuid4(),
        created_by=uuid.uuid4(),
        currency=currency,
        total=Money.of(total, currency),
        coverage=Money.of(coverage, currency),
        discount=Money.of(discount, currency),
        now=NOW,
    )
    if status is not None:
        invoice.status = status
    return invoice


@pytest.fixture
def draft_invoice():
    """Fattura 100.00 EUR, copertura 30.00: dovuto 70.00."""
    return make_invoice(total="100.00", coverage="30.00")


@pytest.fixture
def validated_invoice(draft_invoice):
    ledger.validate_invoice(draft_invoice, NOW)
    return draft_invoice


def make_practitioner(
    rate: Optional[str] = "10",
    fixed_amount: Optional[str] = None,
    currency: str = "EUR",
) -> Practitioner:
    return Practitioner(
        id=uuid.uuid4(),
        first_name="Giulia",
        last_name="Neri",
        specialty="Radiologia",
        commission_rate=Decimal(rate) if rate is not None else None,
        commission_fixed_amount=Decimal(fixed_amount) if fixed_amount is not None else None,
        currency=currency,
        is_active=True,
    )


@pytest.fixture
def practitioner():
    """Interveniente al 10%."""
    return make_practitioner()


def make_commission(practitioner: Practitioner, period: str = "2025-03", paid: bool = False) -> Commission:
    commission = ledger.calculate_commission(
        practitioner, Money.of("200.00"), period, invoice_id=uuid.uuid4(), now=NOW
    )
    if paid:
        ledger.mark_commission_paid(commission, NOW)
    return commission

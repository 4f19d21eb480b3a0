import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CashSessionOpen(BaseModel):
    opening_balance: Decimal = Field(..., description="Fondo cassa iniziale")
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="Valuta (default: valuta della clinica)")
    notes: Optional[str] = Field(None, description="Note di apertura")


class CashSessionClose(BaseModel):
    closing_balance: Decimal = Field(..., description="Contante contato alla chiusura")
    notes: Optional[str] = Field(None, description="Note di chiusura")


class CashSessionRead(BaseModel):
    id: uuid.UUID
    actor_id: uuid.UUID
    currency: str
    opened_at: datetime
    closed_at: Optional[datetime]
    opening_balance: Decimal
    cash_total: Decimal = Field(..., description="Incassi in contanti registrati nella sessione")
    closing_balance: Optional[Decimal]
    expected_balance: Optional[Decimal] = Field(None, description="Fondo iniziale + incassi (calcolato alla chiusura)")
    variance: Optional[Decimal] = Field(None, description="Chiusura - atteso (calcolato alla chiusura)")
    is_open: bool
    notes: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class CashSessionFilter(BaseModel):
    actor_id: Optional[uuid.UUID] = None
    is_open: Optional[bool] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None

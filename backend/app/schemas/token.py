"""
Schemas Pydantic per i token di accesso
Progetto: Clinic Ledger (Gestionale Clinica)
"""

from datetime import datetime

from pydantic import BaseModel, Field


class TokenPayload(BaseModel):
    """
    Schema per il payload contenuto nei token JWT.

    Attributes:
        sub: Subject - ID dell'utente come stringa
        role: Ruolo dell'utente
        exp: Expiration - Data/ora di scadenza
        type: Tipo di token ("access")
    """

    sub: str = Field(..., description="ID utente")
    role: str = Field(..., description="Ruolo dell'utente")
    exp: datetime = Field(..., description="Data/ora di scadenza")
    type: str = Field(..., description="Tipo di token")


__all__ = [
    "TokenPayload",
]

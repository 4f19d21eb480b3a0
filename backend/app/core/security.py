"""
Verifica dei token di accesso
Progetto: Clinic Ledger (Gestionale Clinica)

I token sono emessi dal provider di identità della clinica: questo modulo
si limita a verificarne firma e scadenza ed estrarne utente e ruolo.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, status
from jose import JWTError, jwt

from app.core.config import settings
from app.schemas.token import TokenPayload


def create_access_token(user_id: str, role: str, expires_minutes: Optional[int] = None) -> str:
    """
    Crea un token di accesso JWT firmato con la chiave condivisa.

    Usato dagli strumenti di sviluppo e dai test; in esercizio i token
    arrivano dal provider di identità.

    Args:
        user_id: ID dell'utente
        role: Ruolo dell'utente
        expires_minutes: Validità in minuti (default 30)

    Returns:
        Token JWT codificato
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or 30)

    payload = {
        "sub": user_id,
        "role": role,
        "exp": expire,
        "type": "access",
    }

    return jwt.encode(
        payload,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )


def decode_token(token: str) -> TokenPayload:
    """
    Decodifica e valida un token JWT.

    Args:
        token: Token JWT da decodificare

    Returns:
        TokenPayload con i dati del token

    Raises:
        HTTPException: Se il token è invalido o scaduto
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token invalido o scaduto: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("sub") or not payload.get("role"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token invalido: subject o ruolo mancanti",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return TokenPayload(
        sub=payload["sub"],
        role=payload["role"],
        exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        type=payload.get("type", "access"),
    )


__all__ = [
    "create_access_token",
    "decode_token",
]

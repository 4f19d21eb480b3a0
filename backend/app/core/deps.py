"""
Dependency Injection per il contesto di chiamata
Progetto: Clinic Ledger (Gestionale Clinica)

Costruisce l'OperationContext (utente + ruolo) a partire dal token
di accesso. Il controllo delle capacità avviene nei service.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.permissions import OperationContext, UserRole
from app.core.security import decode_token

# Estrae il token "Bearer" dall'header Authorization
bearer_scheme = HTTPBearer(auto_error=False)


async def get_operation_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> OperationContext:
    """
    Dependency per ottenere il contesto dell'operazione dal token JWT.

    Args:
        credentials: Credenziali Bearer estratte dall'header Authorization

    Returns:
        OperationContext con id utente e ruolo

    Raises:
        HTTPException 401: Se il token è assente, invalido o non di accesso
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token di autenticazione non fornito",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = decode_token(credentials.credentials)

    if token_data.type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token non valido per questa operazione",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        actor_id = UUID(token_data.sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="ID utente invalido nel token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        role = UserRole(token_data.role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Ruolo sconosciuto: {token_data.role}",
        )

    return OperationContext(actor_id=actor_id, role=role)


# Type alias per uso comune
Context = Annotated[OperationContext, Depends(get_operation_context)]


__all__ = [
    "get_operation_context",
    "bearer_scheme",
    "Context",
]

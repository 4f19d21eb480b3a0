"""
Configurazione Database - SQLAlchemy 2.0 Async
Progetto: Clinic Ledger (Gestionale Clinica)

Definisce engine, session factory, dependency injection per FastAPI
e il lock advisory usato per serializzare le operazioni concorrenti.
"""

import logging
import zlib
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.exceptions import ConflictError

# Logger per questo modulo
logger = logging.getLogger(__name__)

# ------------------------------------------------------------
# Engine Async SQLAlchemy 2.0
# ------------------------------------------------------------
engine: AsyncEngine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
)


# ------------------------------------------------------------
# Session Factory
# ------------------------------------------------------------
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency injection per FastAPI.

    Crea una sessione database per ogni richiesta e la chiude
    automaticamente al termine.

    Yields:
        AsyncSession: Sessione database async
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def advisory_xact_lock(db: AsyncSession, namespace: str, key: object) -> None:
    """
    Acquisisce un advisory lock PostgreSQL valido fino a fine transazione.

    La chiave è derivata in modo stabile da (namespace, key), così due
    richieste sulla stessa risorsa logica si serializzano anche quando
    la riga da bloccare non esiste ancora.

    Args:
        db: Sessione database
        namespace: Ambito del lock (es. "invoice_number", "cash_session")
        key: Identificativo della risorsa (anno, UUID operatore, ...)
    """
    lock_key = zlib.crc32(f"{namespace}:{key}".encode("utf-8"))
    await db.execute(text("SELECT pg_advisory_xact_lock(:lock_key)"), {"lock_key": lock_key})


async def init_db() -> None:
    """
    Inizializza la connessione al database.

    Esegue un test di connessione per verificare
    che il database sia raggiungibile.
    """
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Connessione al database stabilita con successo")
    except Exception as e:
        logger.error("Errore connessione database: %s", e)
        raise


async def close_db() -> None:
    """
    Chiude le connessioni al database.

    Da chiamare durante lo shutdown dell'applicazione.
    """
    await engine.dispose()
    logger.info("Connessioni database chiuse")


async def commit_or_conflict(
    db: AsyncSession,
    conflict_detail: str,
    error_cls: type[ConflictError] = ConflictError,
) -> None:
    """
    Esegue il commit convertendo le violazioni di vincolo in ConflictError.

    IntegrityError (vincoli unique/check) e StaleDataError (versione della
    riga cambiata da un'altra transazione) indicano una richiesta in
    conflitto con lo stato corrente, non un guasto dell'infrastruttura.

    Args:
        db: Sessione database
        conflict_detail: Messaggio restituito al client
        error_cls: Sottoclasse di ConflictError da sollevare (es. AlreadyOpen)
    """
    try:
        await db.commit()
    except (IntegrityError, StaleDataError) as e:
        await db.rollback()
        logger.error("Commit fallito per conflitto: %s", e)
        raise error_cls(conflict_detail)

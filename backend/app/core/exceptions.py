"""
Eccezioni Custom per l'applicazione.
Progetto: Clinic Ledger (Gestionale Clinica)

Definisce eccezioni specifiche del dominio per una gestione
centralizzata degli errori.

Ogni errore di dominio ha un error_code distinto, così il chiamante
può distinguere i casi anche quando lo status HTTP coincide.

NOTA: BusinessValidationError è volutamente distinta da pydantic.ValidationError.
- pydantic.ValidationError: errori di formato/tipo nei dati di input (gestiti da FastAPI → 422)
- BusinessValidationError: violazioni delle regole di business logic (gestiti dal nostro handler → 422)
"""

from typing import Any, Dict, Optional

__all__ = [
    "AppException",
    "NotFoundError",
    "BusinessValidationError",
    "ConflictError",
    "AuthorizationError",
    "PersistenceError",
    "InvalidAmount",
    "InvalidDiscount",
    "InvalidState",
    "MissingReference",
    "OverPayment",
    "AlreadyOpen",
    "AlreadyClosed",
    "InvalidConfig",
    "AlreadyFinalized",
]


class AppException(Exception):
    """
    Base exception per l'applicazione.

    Tutte le eccezioni custom ereditano da questa classe base.

    Attributes:
        status_code: HTTP status code da restituire al client
        error_code: Identificativo univoco dell'errore per il frontend
        detail: Messaggio di errore leggibile per l'utente
        extra: Dizionario con dati aggiuntivi per il frontend
    """

    status_code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"
    default_detail: str = "Errore interno del server"

    def __init__(
        self,
        detail: Optional[str] = None,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Inizializza l'eccezione.

        Args:
            detail: Messaggio di errore dettagliato (default: quello di classe)
            error_code: Identificativo univoco (default: quello di classe)
            extra: Dati aggiuntivi da passare al frontend (default: None)
        """
        self.detail = detail if detail is not None else self.default_detail
        self.error_code = error_code if error_code is not None else self.error_code
        self.extra = extra
        self.status_code = self.__class__.status_code
        super().__init__(self.detail)


class NotFoundError(AppException):
    """
    Eccezione sollevata quando una risorsa non viene trovata.
    """

    status_code: int = 404
    error_code: str = "RESOURCE_NOT_FOUND"
    default_detail: str = "Risorsa non trovata"


class BusinessValidationError(ValueError, AppException):
    """
    Eccezione sollevata per violazioni delle regole di business logic.

    Eredita da ValueError per essere catturata dai validatori Pydantic.

    NON confondere con pydantic.ValidationError che gestisce
    la validazione dello schema/formato dei dati in input.
    """

    status_code: int = 422
    error_code: str = "BUSINESS_VALIDATION_ERROR"
    default_detail: str = "Validazione dati fallita"

    def __init__(
        self,
        detail: Optional[str] = None,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        # Chiama AppException.__init__ direttamente per evitare ValueError
        AppException.__init__(self, detail, error_code, extra)


class ConflictError(AppException):
    """
    Eccezione sollevata per conflitti di stato.

    Utilizzata quando un'operazione non può essere eseguita
    a causa dello stato corrente della risorsa.
    """

    status_code: int = 409
    error_code: str = "CONFLICT_STATE"
    default_detail: str = "Conflitto di stato"


class AuthorizationError(AppException):
    """
    Eccezione sollevata per accesso non autorizzato.

    Esempi di utilizzo:
        - "Il ruolo 'doctor' non può registrare pagamenti"
        - "Solo il titolare può chiudere la sessione di cassa"
    """

    status_code: int = 403
    error_code: str = "FORBIDDEN"
    default_detail: str = "Accesso non autorizzato"


class PersistenceError(AppException):
    """
    Errore infrastrutturale del database (connessione persa, timeout, ...).

    Distinto dagli errori di dominio: non indica una richiesta invalida.
    """

    status_code: int = 503
    error_code: str = "PERSISTENCE_ERROR"
    default_detail: str = "Errore di accesso ai dati, riprovare più tardi"


# ------------------------------------------------------------
# Errori di dominio - richieste invalide (422)
# ------------------------------------------------------------
class InvalidAmount(BusinessValidationError):
    """Importo negativo, nullo dove non ammesso, o incoerente."""

    error_code: str = "INVALID_AMOUNT"
    default_detail: str = "Importo non valido"


class InvalidDiscount(BusinessValidationError):
    """Sconto superiore all'importo a carico del paziente."""

    error_code: str = "INVALID_DISCOUNT"
    default_detail: str = "Sconto non valido"


class MissingReference(BusinessValidationError):
    """Riferimento obbligatorio mancante per pagamenti non in contanti."""

    error_code: str = "MISSING_REFERENCE"
    default_detail: str = "Riferimento del pagamento obbligatorio"


class InvalidConfig(BusinessValidationError):
    """Configurazione provvigione incoerente (tasso e importo fisso)."""

    error_code: str = "INVALID_CONFIG"
    default_detail: str = "Configurazione provvigione non valida"


# ------------------------------------------------------------
# Errori di dominio - conflitti di stato (409)
# ------------------------------------------------------------
class InvalidState(ConflictError):
    """Transizione di stato non consentita."""

    error_code: str = "INVALID_STATE"
    default_detail: str = "Transizione di stato non consentita"


class OverPayment(ConflictError):
    """Il pagamento supererebbe l'importo a carico del paziente."""

    error_code: str = "OVER_PAYMENT"
    default_detail: str = "Il pagamento supera l'importo dovuto"


class AlreadyOpen(ConflictError):
    """L'operatore ha già una sessione di cassa aperta."""

    error_code: str = "CASH_SESSION_ALREADY_OPEN"
    default_detail: str = "Esiste già una sessione di cassa aperta"


class AlreadyClosed(ConflictError):
    """La sessione di cassa è già chiusa."""

    error_code: str = "CASH_SESSION_ALREADY_CLOSED"
    default_detail: str = "La sessione di cassa è già chiusa"


class AlreadyFinalized(ConflictError):
    """La provvigione è già stata pagata e non può essere ricalcolata."""

    error_code: str = "COMMISSION_ALREADY_FINALIZED"
    default_detail: str = "Provvigione già pagata"

"""
Ruoli, capacità e contesto di chiamata
Progetto: Clinic Ledger (Gestionale Clinica)

L'autorizzazione non è uno stato implicito del middleware: ogni operazione
dei service riceve un OperationContext esplicito e verifica la capacità
richiesta con `ctx.require(...)`.
"""

import uuid
from dataclasses import dataclass
from enum import Enum

from app.core.exceptions import AuthorizationError


class UserRole(str, Enum):
    """Ruoli utente nel sistema."""
    SUPERVISOR = "supervisor"
    DOCTOR = "doctor"
    SECRETARY = "secretary"
    PHARMACIST = "pharmacist"
    CASHIER = "cashier"
    ACCOUNTANT = "accountant"
    PRACTITIONER = "practitioner"


class Capability(str, Enum):
    """Capacità verificate dalle operazioni del registro."""
    INVOICE_READ = "invoice.read"
    INVOICE_WRITE = "invoice.write"
    INVOICE_CANCEL = "invoice.cancel"
    PAYMENT_APPLY = "payment.apply"
    CASH_SESSION_OPERATE = "cash_session.operate"
    COMMISSION_READ = "commission.read"
    COMMISSION_MANAGE = "commission.manage"
    REPORT_READ = "report.read"


ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.SUPERVISOR: frozenset(Capability),
    UserRole.SECRETARY: frozenset({
        Capability.INVOICE_READ,
        Capability.INVOICE_WRITE,
    }),
    UserRole.CASHIER: frozenset({
        Capability.INVOICE_READ,
        Capability.INVOICE_WRITE,
        Capability.PAYMENT_APPLY,
        Capability.CASH_SESSION_OPERATE,
    }),
    UserRole.ACCOUNTANT: frozenset({
        Capability.INVOICE_READ,
        Capability.INVOICE_CANCEL,
        Capability.COMMISSION_READ,
        Capability.COMMISSION_MANAGE,
        Capability.REPORT_READ,
    }),
    UserRole.PRACTITIONER: frozenset({
        Capability.COMMISSION_READ,
    }),
    UserRole.DOCTOR: frozenset(),
    UserRole.PHARMACIST: frozenset(),
}


@dataclass(frozen=True)
class OperationContext:
    """
    Contesto esplicito di una chiamata ai service.

    Attributes:
        actor_id: UUID dell'utente che esegue l'operazione
        role: Ruolo dell'utente
    """

    actor_id: uuid.UUID
    role: UserRole

    @property
    def capabilities(self) -> frozenset[Capability]:
        return ROLE_CAPABILITIES.get(self.role, frozenset())

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        """
        Verifica che il ruolo abbia la capacità richiesta.

        Raises:
            AuthorizationError: Se il ruolo non dispone della capacità
        """
        if not self.can(capability):
            raise AuthorizationError(
                f"Il ruolo '{self.role.value}' non dispone della capacità '{capability.value}'",
                extra={"capability": capability.value, "role": self.role.value},
            )

    @property
    def is_supervisor(self) -> bool:
        return self.role == UserRole.SUPERVISOR

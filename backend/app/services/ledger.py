"""
Regole del registro fatture e pagamenti
Progetto: Clinic Ledger (Gestionale Clinica)

Funzioni pure, senza sessione database né I/O: operano su importi Money
e su istanze dei modelli (anche transienti). I service si occupano di
caricare e bloccare le righe, invocare queste regole e salvare.

Macchina a stati della fattura:
    draft -> validated -> partially_paid -> ... -> paid
    draft -> paid alla validazione se il dovuto dal paziente è zero
    cancelled raggiungibile da draft, validated, partially_paid
    paid e cancelled sono terminali
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Union

from app.core.exceptions import (
    AlreadyClosed,
    AlreadyFinalized,
    BusinessValidationError,
    InvalidAmount,
    InvalidConfig,
    InvalidDiscount,
    InvalidState,
    MissingReference,
    OverPayment,
)
from app.core.money import Money
from app.models.cash_session import CashSession
from app.models.commission import Commission, Practitioner
from app.models.invoice import Invoice, InvoiceItem, Payment
from app.schemas.commission import PERIOD_PATTERN, CommissionStatus
from app.schemas.invoice import TERMINAL_INVOICE_STATUSES, InvoiceStatus, PaymentMethod

_PERIOD_RE = re.compile(PERIOD_PATTERN)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value: Optional[Decimal], currency: str) -> Money:
    """Converte una colonna Numeric (eventualmente NULL) in Money."""
    return Money.of(value if value is not None else Decimal("0"), currency)


# ============================================================
# Fatture
# ============================================================

def check_invoice_amounts(total: Money, coverage: Money, discount: Money) -> Money:
    """
    Verifica gli importi di una fattura e restituisce il dovuto dal paziente.

    Raises:
        InvalidAmount: importi negativi o copertura superiore al totale
        InvalidDiscount: sconto superiore a totale - copertura
    """
    for label, value in (("totale", total), ("copertura", coverage), ("sconto", discount)):
        if value.is_negative:
            raise InvalidAmount(f"Importo {label} negativo: {value}")

    if coverage > total:
        raise InvalidAmount(
            f"La copertura assicurativa ({coverage}) supera il totale ({total})"
        )

    net = total - coverage
    if discount > net:
        raise InvalidDiscount(
            f"Lo sconto ({discount}) supera l'importo a carico del paziente ({net})",
            extra={"max_discount": str(net.amount)},
        )

    return net - discount


def patient_due(invoice: Invoice) -> Money:
    """Dovuto dal paziente: totale - copertura - sconto."""
    currency = invoice.currency
    return (
        to_money(invoice.total_amount, currency)
        - to_money(invoice.insurance_coverage, currency)
        - to_money(invoice.discount, currency)
    )


def build_item(
    *,
    line_number: int,
    description: str,
    quantity: int,
    unit_price: Decimal,
    currency: str,
    insurance_coverage: Optional[Decimal] = None,
    service_id: Optional[uuid.UUID] = None,
    medication_id: Optional[uuid.UUID] = None,
) -> InvoiceItem:
    """Costruisce una riga fattura verificando quantità, prezzo e copertura."""
    if quantity <= 0:
        raise InvalidAmount(f"Quantità non valida per la riga {line_number}: {quantity}")

    price = Money.of(unit_price, currency)
    if price.is_negative:
        raise InvalidAmount(f"Prezzo unitario negativo per la riga {line_number}")

    line_total = Money(price.amount * quantity, currency)
    coverage = to_money(insurance_coverage, currency)
    if coverage.is_negative or coverage > line_total:
        raise InvalidAmount(
            f"Copertura della riga {line_number} fuori intervallo (0 - {line_total})"
        )

    return InvoiceItem(
        id=uuid.uuid4(),
        line_number=line_number,
        description=description,
        service_id=service_id,
        medication_id=medication_id,
        quantity=quantity,
        unit_price=price.amount,
        total_price=line_total.amount,
        insurance_coverage=coverage.amount,
    )


def totals_from_items(items: Iterable[InvoiceItem], currency: str) -> tuple[Money, Money]:
    """Totale e copertura come somma delle righe."""
    items = list(items)
    total = Money.total((to_money(i.total_price, currency) for i in items), currency)
    coverage = Money.total((to_money(i.insurance_coverage, currency) for i in items), currency)
    return total, coverage


def build_invoice(
    *,
    invoice_number: str,
    patient_id: uuid.UUID,
    created_by: uuid.UUID,
    currency: str,
    total: Optional[Money] = None,
    coverage: Optional[Money] = None,
    discount: Optional[Money] = None,
    items: Sequence[InvoiceItem] = (),
    consultation_id: Optional[uuid.UUID] = None,
    due_date=None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Invoice:
    """
    Crea una fattura in bozza.

    Con righe presenti, totale e copertura derivano dalle righe; un totale
    esplicito deve coincidere con la somma delle righe. Una copertura
    esplicita è ammessa solo se le righe non ne dichiarano una propria.

    Raises:
        InvalidAmount: importi negativi, incoerenti o copertura > totale
        InvalidDiscount: sconto > totale - copertura
    """
    zero = Money.zero(currency)

    if items:
        items_total, items_coverage = totals_from_items(items, currency)
        if total is not None and total != items_total:
            raise InvalidAmount(
                f"Il totale indicato ({total}) non coincide con la somma delle righe ({items_total})"
            )
        total = items_total
        if not items_coverage.is_zero:
            if coverage is not None and coverage != items_coverage:
                raise InvalidAmount(
                    f"La copertura indicata ({coverage}) non coincide con quella delle righe ({items_coverage})"
                )
            coverage = items_coverage

    if total is None:
        raise InvalidAmount("Totale fattura mancante")

    coverage = coverage if coverage is not None else zero
    discount = discount if discount is not None else zero
    due = check_invoice_amounts(total, coverage, discount)

    invoice = Invoice(
        id=uuid.uuid4(),
        invoice_number=invoice_number,
        patient_id=patient_id,
        consultation_id=consultation_id,
        currency=currency,
        total_amount=total.amount,
        insurance_coverage=coverage.amount,
        discount=discount.amount,
        patient_amount=due.amount,
        status=InvoiceStatus.DRAFT.value,
        invoice_date=now or utcnow(),
        due_date=due_date,
        notes=notes,
        created_by=created_by,
    )
    for item in items:
        item.invoice_id = invoice.id
        invoice.items.append(item)
    return invoice


def ensure_editable(invoice: Invoice) -> None:
    """Righe e importi sono modificabili solo in bozza."""
    if invoice.status != InvoiceStatus.DRAFT.value:
        raise InvalidState(
            f"La fattura {invoice.invoice_number} non è modificabile (stato: {invoice.status})"
        )


def add_item(invoice: Invoice, item: InvoiceItem) -> Money:
    """
    Aggiunge una riga a una fattura in bozza e ricalcola gli importi.

    Totale e copertura della riga si sommano a quelli correnti della fattura,
    anche se impostati senza righe alla creazione.
    Se la nuova combinazione viola i vincoli la fattura resta invariata.
    """
    ensure_editable(invoice)
    currency = invoice.currency

    line_total, line_coverage = totals_from_items([item], currency)
    total = to_money(invoice.total_amount, currency) + line_total
    coverage = to_money(invoice.insurance_coverage, currency) + line_coverage
    due = check_invoice_amounts(total, coverage, to_money(invoice.discount, currency))

    item.line_number = len(invoice.items) + 1
    item.invoice_id = invoice.id
    invoice.items.append(item)
    invoice.total_amount = total.amount
    invoice.insurance_coverage = coverage.amount
    invoice.patient_amount = due.amount
    return due


def validate_invoice(invoice: Invoice, now: Optional[datetime] = None) -> None:
    """
    Finalizza una fattura in bozza.

    Con dovuto dal paziente pari a zero (copertura o sconto totali) la
    fattura passa direttamente a paid: nessun pagamento è necessario.

    Raises:
        InvalidState: se la fattura non è in bozza
    """
    if invoice.status != InvoiceStatus.DRAFT.value:
        raise InvalidState(
            f"Solo fatture in bozza possono essere validate (stato: {invoice.status})"
        )
    invoice.validated_at = now or utcnow()
    if patient_due(invoice).is_zero:
        invoice.status = InvoiceStatus.PAID.value
    else:
        invoice.status = InvoiceStatus.VALIDATED.value


def cancel_invoice(invoice: Invoice, reason: Optional[str] = None, now: Optional[datetime] = None) -> None:
    """
    Annulla una fattura. L'annullamento non è reversibile.

    Raises:
        InvalidState: fattura pagata o già annullata
    """
    if invoice.status in TERMINAL_INVOICE_STATUSES:
        raise InvalidState(
            f"La fattura {invoice.invoice_number} non può essere annullata (stato: {invoice.status})"
        )

    invoice.status = InvoiceStatus.CANCELLED.value
    invoice.cancelled_at = now or utcnow()
    invoice.cancellation_reason = reason


# ============================================================
# Pagamenti
# ============================================================

def applied_amount(invoice: Invoice) -> Money:
    """Somma dei pagamenti già applicati alla fattura."""
    return Money.total((to_money(p.amount, invoice.currency) for p in invoice.payments), invoice.currency)


def status_for_applied(applied: Money, due: Money) -> Optional[InvoiceStatus]:
    """
    Stato derivato dalla somma applicata.

    paid se applicato == dovuto, partially_paid se 0 < applicato < dovuto,
    None se nessun pagamento (lo stato resta quello del ciclo di vita).
    """
    if applied.is_zero:
        return None
    if applied == due:
        return InvoiceStatus.PAID
    return InvoiceStatus.PARTIALLY_PAID


def _payment_method(method: Union[PaymentMethod, str]) -> PaymentMethod:
    try:
        return PaymentMethod(method)
    except ValueError:
        raise BusinessValidationError(
            f"Metodo di pagamento non supportato: {method}",
            error_code="INVALID_PAYMENT_METHOD",
        )


def check_payment(
    invoice: Invoice,
    amount: Money,
    method: Union[PaymentMethod, str],
    reference: Optional[str],
) -> Money:
    """
    Verifica un pagamento senza effetti collaterali.

    Returns:
        Money: totale applicato dopo il pagamento

    Raises:
        InvalidState: fattura annullata o già pagata
        InvalidAmount: importo <= 0
        MissingReference: riferimento mancante per metodi diversi dai contanti
        OverPayment: il pagamento supera il dovuto residuo
    """
    if invoice.status in TERMINAL_INVOICE_STATUSES:
        raise InvalidState(
            f"La fattura {invoice.invoice_number} non accetta pagamenti (stato: {invoice.status})"
        )

    if not amount.is_positive:
        raise InvalidAmount(f"L'importo del pagamento deve essere positivo: {amount}")

    if _payment_method(method) != PaymentMethod.CASH and not (reference and reference.strip()):
        raise MissingReference(
            f"Riferimento obbligatorio per pagamenti con metodo '{PaymentMethod(method).value}'"
        )

    due = patient_due(invoice)
    cumulative = applied_amount(invoice) + amount
    if cumulative > due:
        remaining = due - applied_amount(invoice)
        raise OverPayment(
            f"Il pagamento di {amount} supera il residuo dovuto ({remaining})",
            extra={"remaining": str(remaining.amount), "currency": remaining.currency},
        )
    return cumulative


def apply_payment(
    invoice: Invoice,
    amount: Money,
    method: Union[PaymentMethod, str],
    reference: Optional[str],
    actor_id: uuid.UUID,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Payment:
    """
    Applica un pagamento alla fattura e ricalcola lo stato.

    In caso di errore né la fattura né i suoi pagamenti vengono modificati.
    """
    cumulative = check_payment(invoice, amount, method, reference)

    payment = Payment(
        id=uuid.uuid4(),
        invoice_id=invoice.id,
        amount=amount.amount,
        method=_payment_method(method).value,
        reference=reference.strip() if reference and reference.strip() else None,
        notes=notes,
        received_by=actor_id,
        payment_date=now or utcnow(),
    )
    invoice.payments.append(payment)
    invoice.status = status_for_applied(cumulative, patient_due(invoice)).value
    return payment


# ============================================================
# Sessioni di cassa
# ============================================================

def open_cash_session(
    actor_id: uuid.UUID,
    opening_balance: Money,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CashSession:
    """
    Crea una sessione di cassa aperta.

    L'unicità della sessione aperta per operatore è verificata dal service.

    Raises:
        InvalidAmount: fondo iniziale negativo
    """
    if opening_balance.is_negative:
        raise InvalidAmount(f"Il fondo cassa iniziale non può essere negativo: {opening_balance}")

    return CashSession(
        id=uuid.uuid4(),
        actor_id=actor_id,
        currency=opening_balance.currency,
        opened_at=now or utcnow(),
        opening_balance=opening_balance.amount,
        cash_total=Decimal("0"),
        is_open=True,
        notes=notes,
    )


def record_cash_flow(session: CashSession, payment: Payment, currency: str) -> None:
    """
    Registra un incasso in contanti nella sessione aperta dell'operatore.

    `currency` è la valuta della fattura pagata. Nessun effetto per metodi
    diversi dai contanti.

    Raises:
        AlreadyClosed: sessione chiusa
        InvalidState: pagamento registrato da un altro operatore
        InvalidAmount: valuta del pagamento diversa da quella della sessione
    """
    if payment.method != PaymentMethod.CASH.value:
        return
    if not session.is_open:
        raise AlreadyClosed("La sessione di cassa è chiusa")
    if payment.received_by != session.actor_id:
        raise InvalidState("Il pagamento appartiene a un altro operatore")

    total = to_money(session.cash_total, session.currency) + to_money(payment.amount, currency)
    session.cash_total = total.amount
    payment.cash_session_id = session.id


def expected_balance(session: CashSession) -> Money:
    """Fondo iniziale + incassi in contanti della sessione."""
    return to_money(session.opening_balance, session.currency) + to_money(session.cash_total, session.currency)


def close_cash_session(
    session: CashSession,
    closing_balance: Money,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Money:
    """
    Chiude la sessione calcolando atteso e differenza.

    La differenza è un'informazione per il report, mai un errore.

    Returns:
        Money: differenza = chiusura - atteso

    Raises:
        AlreadyClosed: sessione già chiusa
        InvalidAmount: saldo di chiusura negativo
    """
    if not session.is_open:
        raise AlreadyClosed(f"La sessione di cassa {session.id} è già chiusa")
    if closing_balance.is_negative:
        raise InvalidAmount(f"Il saldo di chiusura non può essere negativo: {closing_balance}")

    expected = expected_balance(session)
    variance = closing_balance - expected

    session.closing_balance = closing_balance.amount
    session.expected_balance = expected.amount
    session.variance = variance.amount
    session.closed_at = now or utcnow()
    session.is_open = False
    if notes:
        session.notes = f"{session.notes}\n{notes}" if session.notes else notes
    return variance


# ============================================================
# Provvigioni
# ============================================================

@dataclass(frozen=True)
class CommissionBasis:
    """Base provvigionale validata: percentuale oppure importo fisso."""

    rate: Optional[Decimal] = None
    fixed_amount: Optional[Money] = None


def commission_basis(
    rate: Optional[Decimal],
    fixed_amount: Optional[Decimal],
    currency: str,
) -> CommissionBasis:
    """
    Valida la configurazione provvigionale.

    Raises:
        InvalidConfig: entrambe o nessuna delle basi impostate, valori fuori intervallo
    """
    if (rate is None) == (fixed_amount is None):
        raise InvalidConfig(
            "Impostare esattamente una base provvigionale: percentuale oppure importo fisso"
        )
    if rate is not None:
        if rate < 0 or rate > 100:
            raise InvalidConfig(f"Percentuale provvigione fuori intervallo (0-100): {rate}")
        return CommissionBasis(rate=Decimal(rate))

    fixed = Money.of(fixed_amount, currency)
    if fixed.is_negative:
        raise InvalidConfig(f"Importo fisso negativo: {fixed}")
    return CommissionBasis(fixed_amount=fixed)


def check_period(period: str) -> str:
    if not period or not _PERIOD_RE.match(period):
        raise BusinessValidationError(
            f"Periodo non valido: {period!r} (formato atteso YYYY-MM)",
            error_code="INVALID_PERIOD",
        )
    return period


def calculate_commission(
    practitioner: Practitioner,
    base_amount: Money,
    period: str,
    *,
    invoice_id: Optional[uuid.UUID] = None,
    service_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> Commission:
    """
    Calcola la provvigione 'due' di un interveniente.

    importo = base x percentuale / 100 (arrotondamento half-even),
    oppure l'importo fisso configurato.

    Raises:
        InvalidConfig: base provvigionale incoerente
        InvalidAmount: base negativa o valuta diversa dall'importo fisso
    """
    basis = commission_basis(
        practitioner.commission_rate,
        practitioner.commission_fixed_amount,
        practitioner.currency or base_amount.currency,
    )
    check_period(period)
    if base_amount.is_negative:
        raise InvalidAmount(f"Base di calcolo negativa: {base_amount}")

    if basis.rate is not None:
        amount = base_amount.percentage(basis.rate)
    else:
        if basis.fixed_amount.currency != base_amount.currency:
            raise InvalidAmount(
                f"Valute diverse: {basis.fixed_amount.currency} e {base_amount.currency}",
                error_code="CURRENCY_MISMATCH",
            )
        amount = basis.fixed_amount

    return Commission(
        id=uuid.uuid4(),
        practitioner_id=practitioner.id,
        invoice_id=invoice_id,
        service_id=service_id,
        currency=base_amount.currency,
        base_amount=base_amount.amount,
        commission_rate=basis.rate,
        fixed_amount=basis.fixed_amount.amount if basis.fixed_amount is not None else None,
        commission_amount=amount.amount,
        period=period,
        status=CommissionStatus.DUE.value,
        calculated_at=now or utcnow(),
        paid_at=None,
    )


def refresh_commission(existing: Commission, fresh: Commission) -> Commission:
    """
    Aggiorna una provvigione 'due' con un nuovo calcolo per la stessa chiave.

    Raises:
        AlreadyFinalized: la provvigione esistente è già pagata
    """
    if existing.status == CommissionStatus.PAID.value:
        raise AlreadyFinalized(
            f"Provvigione {existing.id} del periodo {existing.period} già pagata",
            extra={"commission_id": str(existing.id)},
        )
    existing.currency = fresh.currency
    existing.base_amount = fresh.base_amount
    existing.commission_rate = fresh.commission_rate
    existing.fixed_amount = fresh.fixed_amount
    existing.commission_amount = fresh.commission_amount
    existing.calculated_at = fresh.calculated_at
    return existing


def mark_commission_paid(commission: Commission, now: Optional[datetime] = None) -> None:
    """
    Segna una provvigione come pagata.

    Raises:
        InvalidState: provvigione non in stato 'due'
    """
    if commission.status != CommissionStatus.DUE.value:
        raise InvalidState(f"La provvigione {commission.id} non è da pagare (stato: {commission.status})")
    commission.status = CommissionStatus.PAID.value
    commission.paid_at = now or utcnow()

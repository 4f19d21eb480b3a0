"""
Tipo valore Money
Progetto: Clinic Ledger (Gestionale Clinica)

Importo a scala fissa (Decimal) con codice valuta.
Nessuna operazione passa per float: gli importi vengono quantizzati
all'unità minima della valuta con arrotondamento bancario (ROUND_HALF_EVEN).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from functools import total_ordering
from typing import Iterable, Union

from app.core.exceptions import InvalidAmount

# Valute con unità minima diversa dal centesimo (ISO 4217)
_MINOR_UNITS: dict[str, int] = {
    "XOF": 0,
    "XAF": 0,
    "GNF": 0,
    "JPY": 0,
    "KRW": 0,
    "BHD": 3,
    "KWD": 3,
    "TND": 3,
}

AmountLike = Union[Decimal, int, str]


def minor_units(currency: str) -> int:
    """Numero di decimali ammessi per la valuta (default 2)."""
    return _MINOR_UNITS.get(currency.upper(), 2)


def _exponent(currency: str) -> Decimal:
    return Decimal(1).scaleb(-minor_units(currency))


def _to_decimal(value: AmountLike) -> Decimal:
    if isinstance(value, float):
        raise InvalidAmount("Gli importi non possono essere float", error_code="FLOAT_AMOUNT")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"Importo non interpretabile: {value!r}")


@total_ordering
@dataclass(frozen=True)
class Money:
    """
    Importo monetario immutabile.

    L'importo è sempre rappresentato alla scala della valuta
    (es. 70.00 EUR, 5000 XOF). Il costruttore rifiuta importi con più
    decimali di quelli ammessi: per arrotondare usare `Money.rounded`.

    Attributes:
        amount: Importo Decimal alla scala della valuta
        currency: Codice ISO 4217
    """

    amount: Decimal
    currency: str = "EUR"

    def __post_init__(self) -> None:
        currency = self.currency.upper()
        value = _to_decimal(self.amount)
        if not value.is_finite():
            raise InvalidAmount(f"Importo non finito: {value}")
        scaled = value.quantize(_exponent(currency), rounding=ROUND_HALF_EVEN)
        if scaled != value:
            raise InvalidAmount(
                f"L'importo {value} ha più di {minor_units(currency)} decimali per {currency}"
            )
        object.__setattr__(self, "amount", scaled)
        object.__setattr__(self, "currency", currency)

    # ------------------------------------------------------------
    # Costruttori
    # ------------------------------------------------------------
    @classmethod
    def of(cls, value: AmountLike, currency: str = "EUR") -> "Money":
        """Importo esatto (errore se ha troppi decimali)."""
        return cls(_to_decimal(value), currency)

    @classmethod
    def rounded(cls, value: AmountLike, currency: str = "EUR") -> "Money":
        """Importo arrotondato all'unità minima con ROUND_HALF_EVEN."""
        value = _to_decimal(value)
        return cls(value.quantize(_exponent(currency), rounding=ROUND_HALF_EVEN), currency)

    @classmethod
    def zero(cls, currency: str = "EUR") -> "Money":
        return cls(Decimal(0), currency)

    @classmethod
    def total(cls, amounts: Iterable["Money"], currency: str = "EUR") -> "Money":
        """Somma di una sequenza di importi (zero se vuota)."""
        result = cls.zero(currency)
        for amount in amounts:
            result = result + amount
        return result

    # ------------------------------------------------------------
    # Aritmetica
    # ------------------------------------------------------------
    def _check_currency(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Operazione non supportata tra Money e {type(other).__name__}")
        if other.currency != self.currency:
            raise InvalidAmount(
                f"Valute diverse: {self.currency} e {other.currency}",
                error_code="CURRENCY_MISMATCH",
            )

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> "Money":
        return Money(-self.amount, self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def percentage(self, rate: AmountLike) -> "Money":
        """Quota percentuale dell'importo (rate/100), arrotondata half-even."""
        return Money.rounded(self.amount * _to_decimal(rate) / Decimal(100), self.currency)

    # ------------------------------------------------------------
    # Predicati
    # ------------------------------------------------------------
    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"

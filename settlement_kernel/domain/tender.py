"""
Tender -- Exact-decimal tender entries and the tender ledger encoding.

Responsibility:
    Provides the single typed representation of "how an obligation was paid":
    TenderKind, TenderEntry, and TenderLedger, plus the one sanctioned
    encode/decode pair for the human-auditable tender string persisted on
    every obligation (e.g. ``"mobile:1500,cash:500"``).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by the obligation state machine, the settlement processor, and
    the period aggregator.  No outward dependencies except exceptions.

Grammar (strict)::

    ledger  := "" | entry ("," entry)*
    entry   := label ":" amount
    label   := [a-z][a-z0-9_-]*
    amount  := DIGITS ("." DIGITS)?      -- strictly positive

Invariants enforced:
    - Amounts are Decimal, finite, and strictly positive.  Floats are refused.
    - decode() either returns every fragment or raises MalformedLedgerError.
      It never skips a fragment it cannot read.
    - decode(encode(entries)) == entries for every entry sequence.

Failure modes:
    - InvalidTenderAmountError when an entry is constructed with a bad amount.
    - InvalidTenderLabelError when ``TenderEntry.of`` gets a blank or
      unreadable label.
    - MalformedLedgerError when a persisted string does not match the grammar.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, Iterator, Mapping

from settlement_kernel.exceptions import (
    InvalidTenderAmountError,
    InvalidTenderLabelError,
    MalformedLedgerError,
)

_LABEL_RE = re.compile(r"[a-z][a-z0-9_-]*")
_FRAGMENT_RE = re.compile(r"(?P<label>[a-z][a-z0-9_-]*):(?P<amount>[0-9]+(?:\.[0-9]+)?)")

ZERO = Decimal("0")


class TenderKind(str, Enum):
    """Tender kinds shared by the ledger, the processor and reporting."""

    CASH = "cash"
    MOBILE = "mobile"
    CARD = "card"
    DEBT = "debt"
    OTHER = "other"


_CANONICAL: dict[str, TenderKind] = {
    kind.value: kind for kind in TenderKind if kind is not TenderKind.OTHER
}


def resolve_label(
    label: str,
    aliases: Mapping[str, str] | None = None,
) -> tuple[TenderKind, str | None]:
    """
    Map a tender label to its kind.

    Returns ``(kind, None)`` for canonical labels and configured aliases, and
    ``(TenderKind.OTHER, label)`` for anything else so the label survives a
    round trip.
    """
    if aliases and label in aliases:
        label = aliases[label]
    kind = _CANONICAL.get(label)
    if kind is not None:
        return kind, None
    return TenderKind.OTHER, label


def _coerce_amount(amount: Decimal | str | int) -> Decimal:
    if isinstance(amount, bool) or isinstance(amount, float):
        raise InvalidTenderAmountError(
            repr(amount), "binary floating point amounts are not accepted"
        )
    if not isinstance(amount, Decimal):
        try:
            amount = Decimal(str(amount))
        except InvalidOperation as e:
            raise InvalidTenderAmountError(repr(amount), "not a decimal number") from e
    if not amount.is_finite():
        raise InvalidTenderAmountError(str(amount), "amount must be finite")
    if amount <= ZERO:
        raise InvalidTenderAmountError(str(amount), "amount must be positive")
    return amount


def format_amount(amount: Decimal) -> str:
    """Render a Decimal without exponent notation."""
    return format(amount, "f")


@dataclass(frozen=True, slots=True)
class TenderEntry:
    """
    One (tender kind, amount) pair.

    Contract:
        ``amount`` is a finite, strictly positive Decimal.  ``label`` is set
        only for ``TenderKind.OTHER`` entries and holds the original label.
    """

    kind: TenderKind
    amount: Decimal
    label: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _coerce_amount(self.amount))
        if not isinstance(self.kind, TenderKind):
            object.__setattr__(self, "kind", TenderKind(self.kind))
        if self.kind is TenderKind.OTHER:
            if not self.label or not _LABEL_RE.fullmatch(self.label):
                raise ValueError(f"Invalid tender label: {self.label!r}")
            if self.label in _CANONICAL:
                raise ValueError(
                    f"Label '{self.label}' is canonical; use TenderKind.{_CANONICAL[self.label].name}"
                )
        elif self.label is not None:
            raise ValueError("Only TenderKind.OTHER entries carry a label")

    @classmethod
    def of(
        cls,
        label: str,
        amount: Decimal | str | int,
        aliases: Mapping[str, str] | None = None,
    ) -> TenderEntry:
        """
        Build an entry from a label such as ``"cash"`` or ``"mpesa"``.

        Raises:
            InvalidTenderLabelError: If the label is blank or not a tender label.
            InvalidTenderAmountError: If the amount is invalid.
        """
        normalized = label.strip().lower() if label else ""
        if not _LABEL_RE.fullmatch(normalized):
            raise InvalidTenderLabelError(str(label))
        kind, other_label = resolve_label(normalized, aliases)
        if other_label is not None and not _LABEL_RE.fullmatch(other_label):
            raise InvalidTenderLabelError(other_label)
        return cls(kind=kind, amount=amount, label=other_label)

    def canonical(self, aliases: Mapping[str, str] | None) -> TenderEntry:
        """Resolve an ``OTHER`` label through ``aliases``; other kinds are unchanged."""
        if self.kind is not TenderKind.OTHER or not aliases:
            return self
        kind, label = resolve_label(self.label, aliases)
        if kind is TenderKind.OTHER and label == self.label:
            return self
        return TenderEntry(kind=kind, amount=self.amount, label=label)

    @property
    def key(self) -> str:
        """Label used in the encoding and as the accumulation key."""
        return self.label if self.kind is TenderKind.OTHER else self.kind.value

    @property
    def is_debt(self) -> bool:
        return self.kind is TenderKind.DEBT

    def with_amount(self, amount: Decimal) -> TenderEntry:
        return TenderEntry(kind=self.kind, amount=amount, label=self.label)

    def __str__(self) -> str:
        return f"{self.key}:{format_amount(self.amount)}"


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode(entries: Iterable[TenderEntry]) -> str:
    """Encode entries as ``label:amount`` fragments joined by commas."""
    return ",".join(str(entry) for entry in entries)


def decode(
    text: str,
    aliases: Mapping[str, str] | None = None,
) -> tuple[TenderEntry, ...]:
    """
    Decode a tender string into entries, in order.

    Raises:
        MalformedLedgerError: If any fragment does not match the grammar or
            carries a zero amount.  Nothing is ever skipped.
    """
    if not isinstance(text, str):
        raise MalformedLedgerError(repr(text), repr(text), "is not a string")
    if text == "":
        return ()

    entries: list[TenderEntry] = []
    for fragment in text.split(","):
        if not fragment:
            raise MalformedLedgerError(text, fragment, "is empty")
        match = _FRAGMENT_RE.fullmatch(fragment)
        if match is None:
            raise MalformedLedgerError(text, fragment, "does not match label:amount")
        amount = Decimal(match.group("amount"))
        if amount <= ZERO:
            raise MalformedLedgerError(text, fragment, "has a non-positive amount")
        kind, label = resolve_label(match.group("label"), aliases)
        entries.append(TenderEntry(kind=kind, amount=amount, label=label))
    return tuple(entries)


def decode_legacy(
    label: str | None,
    amount_paid: Decimal,
    aliases: Mapping[str, str] | None = None,
) -> tuple[TenderEntry, ...]:
    """
    Rebuild entries from a pre-breakdown single-label payment method.

    Older records store only a label such as ``"cash"`` or ``"mobile"`` next
    to the paid amount.  Strings that already contain a breakdown are decoded
    strictly.  Unknown labels become ``TenderKind.OTHER``.
    """
    if label is None or label == "":
        if amount_paid > ZERO:
            raise MalformedLedgerError(
                "", "", f"is missing although {format_amount(amount_paid)} was paid"
            )
        return ()
    if ":" in label:
        return decode(label, aliases)
    if amount_paid <= ZERO:
        return ()
    normalized = label.strip().lower()
    if not _LABEL_RE.fullmatch(normalized):
        raise MalformedLedgerError(label, label, "is not a tender label")
    kind, other_label = resolve_label(normalized, aliases)
    return (TenderEntry(kind=kind, amount=amount_paid, label=other_label),)


def merge(
    existing: Iterable[TenderEntry],
    new: Iterable[TenderEntry],
) -> tuple[TenderEntry, ...]:
    """
    Accumulate ``new`` into ``existing``.

    Entries with the same kind (and, for OTHER, the same label) sum their
    amounts.  Order of first appearance is kept.
    """
    totals: dict[str, TenderEntry] = {}
    for entry in (*existing, *new):
        current = totals.get(entry.key)
        totals[entry.key] = entry if current is None else current.with_amount(
            current.amount + entry.amount
        )
    return tuple(totals.values())


# ---------------------------------------------------------------------------
# Ledger value
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TenderLedger:
    """
    Accumulated tender entries of one obligation.

    Contract:
        Holds at most one entry per tender key.  The debt entry, when
        present, always equals the debt still outstanding on the obligation.

    Guarantees:
        - Immutable; every operation returns a new ledger.
        - ``paid_total`` counts only non-debt entries.
    """

    entries: tuple[TenderEntry, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", merge((), self.entries))

    @classmethod
    def empty(cls) -> TenderLedger:
        return cls()

    @classmethod
    def parse(cls, text: str, aliases: Mapping[str, str] | None = None) -> TenderLedger:
        """Decode a persisted tender string, merging repeated kinds."""
        return cls(decode(text, aliases))

    @property
    def paid_total(self) -> Decimal:
        return sum((e.amount for e in self.entries if not e.is_debt), ZERO)

    @property
    def debt_total(self) -> Decimal:
        return sum((e.amount for e in self.entries if e.is_debt), ZERO)

    def totals_by_kind(self) -> dict[str, Decimal]:
        """Amount per tender key, debt excluded."""
        return {e.key: e.amount for e in self.entries if not e.is_debt}

    def merge(self, entries: Iterable[TenderEntry]) -> TenderLedger:
        return TenderLedger(merge(self.entries, entries))

    def add_debt(self, amount: Decimal) -> TenderLedger:
        if amount <= ZERO:
            return self
        return self.merge((TenderEntry(kind=TenderKind.DEBT, amount=amount),))

    def clear_debt(self, amount: Decimal) -> TenderLedger:
        """Reduce the debt entry by ``amount``, dropping it at zero."""
        if amount <= ZERO:
            return self
        if amount > self.debt_total:
            raise ValueError(
                f"Cannot clear {amount} of debt, only {self.debt_total} outstanding"
            )
        remaining: list[TenderEntry] = []
        for entry in self.entries:
            if entry.is_debt:
                left = entry.amount - amount
                if left > ZERO:
                    remaining.append(entry.with_amount(left))
            else:
                remaining.append(entry)
        return TenderLedger(tuple(remaining))

    def encode(self) -> str:
        return encode(self.entries)

    def __iter__(self) -> Iterator[TenderEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __str__(self) -> str:
        return self.encode()

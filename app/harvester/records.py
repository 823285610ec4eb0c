"""Record normalisation and identity keys for floor-sheet rows.

A raw row is the ordered list of cell texts read from one rendered table row.
``normalize`` turns it into an immutable :class:`Record`; every record carries
an identity key derived by the deployment's key strategy, which must stay
stable across re-fetches of the same logical row.
"""
from __future__ import annotations

import hashlib
import html
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional, Sequence

from . import config
from .error_codes import ErrorCode
from .faults import NormalizationError

FIELD_NAMES: tuple[str, ...] = (
    "SN",
    "ContractNo",
    "Symbol",
    "Buyer",
    "Seller",
    "Quantity",
    "Rate",
    "Amount",
)
ARITY = len(FIELD_NAMES)
NUMERIC_FIELDS: frozenset[str] = frozenset({"quantity", "rate", "amount"})

_ZERO_DECIMAL = re.compile(r"^([+-]?(?:\d{1,3}(?:,\d{3})+|\d+))\.0+$")
_NUMBER = re.compile(r"^[+-]?(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?$")
_WHITESPACE = re.compile(r"\s+")


def _clean_text(value: object) -> str:
    """Trim a cell and undo quoting/escaping artifacts from the rendered page."""

    text = html.unescape("" if value is None else str(value))
    text = _WHITESPACE.sub(" ", text).strip()
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        text = text[1:-1].strip()
    return text.replace('""', '"')


def strip_zero_decimal(value: str) -> str:
    """Drop an insignificant ``.00`` suffix from a numeric-looking field.

    ``"1,200.00"`` becomes ``"1,200"``; ``"12.50"`` and ``"500"`` are returned
    unchanged, as is anything that does not look like a number.
    """

    match = _ZERO_DECIMAL.match(value)
    return match.group(1) if match else value


def parse_number(value: str) -> Decimal:
    """Parse a floor-sheet number (thousands separators allowed) into a ``Decimal``."""

    text = (value or "").strip()
    if not _NUMBER.match(text):
        raise ValueError(f"not a number: {value!r}")
    try:
        return Decimal(text.replace(",", ""))
    except InvalidOperation as exc:  # pragma: no cover - regex guards this
        raise ValueError(f"not a number: {value!r}") from exc


def _canonical_number(value: str) -> str:
    number = parse_number(value).normalize()
    # Decimal("1E+3") -> "1000"
    return format(number, "f")


@dataclass(frozen=True)
class Record:
    """One floor-sheet trade, normalised and immutable."""

    sn: str
    contract_no: str
    symbol: str
    buyer: str
    seller: str
    quantity: str
    rate: str
    amount: str
    identity_key: str = field(default="", compare=False)

    def as_row(self) -> tuple[str, ...]:
        """Return the field values in output order."""

        return (
            self.sn,
            self.contract_no,
            self.symbol,
            self.buyer,
            self.seller,
            self.quantity,
            self.rate,
            self.amount,
        )

    def numeric(self, name: str) -> Decimal:
        """Return the numeric value of ``quantity``, ``rate`` or ``amount``."""

        if name not in NUMERIC_FIELDS:
            raise KeyError(name)
        return parse_number(getattr(self, name))

    def to_dict(self) -> Dict[str, str]:
        return dict(zip(FIELD_NAMES, self.as_row()))


KeyStrategy = Callable[[Record], str]


def contract_key(record: Record) -> str:
    """Identity is the exchange contract number alone."""

    return record.contract_no


def composite_key(record: Record) -> str:
    """Hash of contract, symbol, buyer, seller, quantity and rate.

    Numbers are canonicalised first so ``1,000`` and ``1000.00`` produce the
    same key; text columns are compared case-insensitively.
    """

    parts = [
        record.contract_no,
        record.symbol.upper(),
        record.buyer.upper(),
        record.seller.upper(),
        _canonical_number(record.quantity),
        _canonical_number(record.rate),
    ]
    digest = hashlib.sha1("\x1f".join(parts).encode("utf-8")).hexdigest()
    return digest


KEY_STRATEGIES: Dict[str, KeyStrategy] = {
    "composite": composite_key,
    "contract": contract_key,
}


def resolve_key_strategy(name: Optional[str] = None) -> KeyStrategy:
    """Return the key strategy registered under ``name`` (config default)."""

    key = (name or config.IDENTITY_KEY_STRATEGY).strip().lower()
    try:
        return KEY_STRATEGIES[key]
    except KeyError as exc:
        raise ValueError(f"Unknown identity key strategy: {key!r}") from exc


def normalize(raw_row: Sequence[object], *, key_strategy: Optional[KeyStrategy] = None) -> Record:
    """Normalise one raw row into a :class:`Record`.

    Raises :class:`NormalizationError` when the row does not have exactly
    eight fields, when a numeric column does not parse, or when the contract
    number is blank.
    """

    cells = list(raw_row)
    if len(cells) != ARITY:
        raise NormalizationError(
            f"expected {ARITY} fields, got {len(cells)}",
            error_code=ErrorCode.ROW_ARITY,
            row=[str(cell) for cell in cells],
        )

    values = [strip_zero_decimal(_clean_text(cell)) for cell in cells]
    record = Record(*values)

    if not record.contract_no:
        raise NormalizationError("blank contract number", row=values)
    for name in sorted(NUMERIC_FIELDS):
        try:
            record.numeric(name)
        except ValueError as exc:
            raise NormalizationError(f"{name}: {exc}", row=values) from exc

    strategy = key_strategy or resolve_key_strategy()
    try:
        key = strategy(record)
    except ValueError as exc:
        raise NormalizationError(f"identity key: {exc}", row=values) from exc
    if not key:
        raise NormalizationError("empty identity key", row=values)
    return Record(*values, identity_key=key)


__all__ = [
    "ARITY",
    "FIELD_NAMES",
    "KEY_STRATEGIES",
    "KeyStrategy",
    "Record",
    "composite_key",
    "contract_key",
    "normalize",
    "parse_number",
    "resolve_key_strategy",
    "strip_zero_decimal",
]

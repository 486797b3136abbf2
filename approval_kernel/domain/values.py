"""
Values -- typed request field values.

Responsibility:
    Provides ``TypedValue``, the closed set of value kinds a request field
    or a branch condition may carry: String, Number, Bool, Date.  Every
    field submitted with a request is converted to a ``TypedValue`` at the
    engine boundary so that condition evaluation never coerces between
    kinds.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by ``domain.graph`` (conditions), ``domain.instance`` (fields)
    and ``domain.snapshot`` (wire format).

Invariants enforced:
    - The kind of a value is fixed at construction and matches its Python
      payload type (``str``, ``Decimal``, ``bool``, ``date``).
    - Numbers are held as ``Decimal``; floats are converted through ``str``
      so that equality is exact.
    - ``bool`` is never accepted as a Number (Python treats it as ``int``).

Failure modes:
    - ValueError on construction when payload and kind disagree.
    - TypeError from ``TypedValue.infer`` for unsupported Python types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class ValueKind(str, Enum):
    """Closed set of field value kinds."""

    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    DATE = "date"


ORDERED_KINDS: frozenset[ValueKind] = frozenset({ValueKind.NUMBER, ValueKind.DATE})


def _normalize(kind: ValueKind, value: Any) -> Any:
    if kind is ValueKind.STRING:
        if not isinstance(value, str):
            raise ValueError(f"String value must be str, got {type(value).__name__}")
        return value
    if kind is ValueKind.BOOL:
        if not isinstance(value, bool):
            raise ValueError(f"Bool value must be bool, got {type(value).__name__}")
        return value
    if kind is ValueKind.NUMBER:
        if isinstance(value, bool):
            raise ValueError("Number value must not be bool")
        if isinstance(value, Decimal):
            number = value
        elif isinstance(value, (int, float, str)):
            try:
                number = Decimal(str(value))
            except InvalidOperation as exc:
                raise ValueError(f"Invalid number: {value!r}") from exc
        else:
            raise ValueError(f"Number value must be numeric, got {type(value).__name__}")
        if not number.is_finite():
            raise ValueError(f"Number value must be finite, got {value!r}")
        return number
    if kind is ValueKind.DATE:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            return date.fromisoformat(value)
        raise ValueError(f"Date value must be a date, got {type(value).__name__}")
    raise ValueError(f"Unknown value kind: {kind!r}")


@dataclass(frozen=True)
class TypedValue:
    """
    A request field value tagged with its kind.

    Contract:
        ``kind`` is one of ``ValueKind``; ``value`` is the normalized Python
        payload for that kind.

    Guarantees:
        - Immutable and hashable.
        - ``to_dict()`` / ``from_dict()`` round-trip through a JSON-safe
          ``{"kind", "value"}`` pair.
    """

    kind: ValueKind
    value: Any

    def __post_init__(self) -> None:
        kind = ValueKind(self.kind)
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "value", _normalize(kind, self.value))

    @classmethod
    def string(cls, value: str) -> TypedValue:
        return cls(ValueKind.STRING, value)

    @classmethod
    def number(cls, value: int | float | str | Decimal) -> TypedValue:
        return cls(ValueKind.NUMBER, value)

    @classmethod
    def boolean(cls, value: bool) -> TypedValue:
        return cls(ValueKind.BOOL, value)

    @classmethod
    def of_date(cls, value: date | str) -> TypedValue:
        return cls(ValueKind.DATE, value)

    @classmethod
    def infer(cls, raw: Any) -> TypedValue:
        """Build a TypedValue from a plain Python value.

        ``bool`` is checked before numbers; ``datetime`` collapses to its date.

        Raises:
            TypeError: If ``raw`` is not one of str, bool, int, float,
                Decimal, date.
        """
        if isinstance(raw, TypedValue):
            return raw
        if isinstance(raw, bool):
            return cls.boolean(raw)
        if isinstance(raw, (int, float, Decimal)):
            return cls.number(raw)
        if isinstance(raw, (date, datetime)):
            return cls.of_date(raw)
        if isinstance(raw, str):
            return cls.string(raw)
        raise TypeError(f"Unsupported field value type: {type(raw).__name__}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize as a JSON-safe ``{"kind", "value"}`` pair."""
        if self.kind is ValueKind.NUMBER:
            payload: Any = str(self.value)
        elif self.kind is ValueKind.DATE:
            payload = self.value.isoformat()
        else:
            payload = self.value
        return {"kind": self.kind.value, "value": payload}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TypedValue:
        return cls(ValueKind(data["kind"]), data["value"])

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.to_dict()['value']}"

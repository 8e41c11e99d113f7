"""
Exact resource quantity arithmetic.

Quantities are parsed with the kubernetes client's own parser into
``Decimal`` values and summed without floating point. Formatting back to a
string follows the Kubernetes canonical form closely enough that the
API server accepts it and a semantic comparison round-trips.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Any

from kubernetes.utils.quantity import parse_quantity

_BINARY_SUFFIXES = (("Ei", 6), ("Pi", 5), ("Ti", 4), ("Gi", 3), ("Mi", 2), ("Ki", 1))
_DECIMAL_SUFFIXES = (("E", 6), ("P", 5), ("T", 4), ("G", 3), ("M", 2), ("k", 1))
_FRACTION_SUFFIXES = (("m", Decimal(10) ** 3), ("u", Decimal(10) ** 6), ("n", Decimal(10) ** 9))


@dataclass(frozen=True)
class Quantity:
    """A resource amount. Equality ignores the formatting preference."""

    value: Decimal
    binary: bool = False

    @classmethod
    def parse(cls, raw: Any) -> Quantity:
        if isinstance(raw, Quantity):
            return raw
        text = str(raw).strip()
        return cls(Decimal(parse_quantity(text)), binary=text.endswith("i"))

    def __add__(self, other: Quantity) -> Quantity:
        return Quantity(self.value + other.value, self.binary or other.binary)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Quantity):
            return NotImplemented
        return self.value == other.value

    def __hash__(self) -> int:
        return hash(self.value)

    def __str__(self) -> str:
        return format_quantity(self.value, self.binary)


def _is_integral(value: Decimal) -> bool:
    return value == value.to_integral_value()


def format_quantity(value: Decimal, binary: bool = False) -> str:
    """Render *value* with the largest suffix that keeps it exact."""
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    value = abs(value)

    if _is_integral(value):
        if binary:
            for suffix, power in _BINARY_SUFFIXES:
                unit = Decimal(1024) ** power
                if value % unit == 0:
                    return f"{sign}{int(value / unit)}{suffix}"
        for suffix, power in _DECIMAL_SUFFIXES:
            unit = Decimal(1000) ** power
            if value % unit == 0:
                return f"{sign}{int(value / unit)}{suffix}"
        return f"{sign}{int(value)}"

    for suffix, scale in _FRACTION_SUFFIXES:
        scaled = value * scale
        if _is_integral(scaled):
            return f"{sign}{int(scaled)}{suffix}"
    # Kubernetes rounds anything finer than a nano-unit up.
    return f"{sign}{int((value * Decimal(10) ** 9).to_integral_value(rounding=ROUND_CEILING))}n"


def zero_list(names: Iterable[str]) -> dict[str, Quantity]:
    return {name: Quantity(Decimal(0)) for name in names}


def add_into(total: dict[str, Quantity], values: Mapping[str, Any] | None) -> dict[str, Quantity]:
    """Add every quantity in *values* into *total*, resource name by name."""
    for name, raw in (values or {}).items():
        quantity = Quantity.parse(raw)
        total[name] = total[name] + quantity if name in total else quantity
    return total


def to_resource_list(totals: Mapping[str, Quantity]) -> dict[str, str]:
    return {name: str(quantity) for name, quantity in totals.items()}


def semantic_equal(left: Mapping[str, Any] | None, right: Mapping[str, Any] | None) -> bool:
    """Compare two resource lists by value, ignoring key order and formatting."""
    left = left or {}
    right = right or {}
    if left.keys() != right.keys():
        return False
    try:
        return all(Quantity.parse(left[name]) == Quantity.parse(right[name]) for name in left)
    except ValueError:
        return False

"""Closed real intervals for rigorous bounds on term values.

Only the arithmetic needed to bound sums of terms is provided. Rounding is
not directed, so bounds are exact up to floating-point rounding.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Union

Number = Union[int, float]


@dataclass(frozen=True)
class Interval:
    """Closed interval ``[lower, upper]``."""

    lower: float
    upper: float

    def __post_init__(self) -> None:
        if math.isnan(self.lower) or math.isnan(self.upper):
            raise ValueError("Interval bounds must not be NaN.")
        if self.lower > self.upper:
            raise ValueError(
                f"Interval lower bound {self.lower} exceeds upper bound {self.upper}."
            )

    @classmethod
    def point(cls, value: Number) -> "Interval":
        return cls(float(value), float(value))

    @property
    def width(self) -> float:
        return self.upper - self.lower

    @property
    def midpoint(self) -> float:
        return 0.5 * (self.lower + self.upper)

    def __contains__(self, value: Number) -> bool:
        return self.lower <= value <= self.upper

    def _coerce(self, other: "Interval | Number") -> "Interval":
        if isinstance(other, Interval):
            return other
        return Interval.point(other)

    def __add__(self, other: "Interval | Number") -> "Interval":
        other = self._coerce(other)
        return Interval(self.lower + other.lower, self.upper + other.upper)

    __radd__ = __add__

    def __neg__(self) -> "Interval":
        return Interval(-self.upper, -self.lower)

    def __sub__(self, other: "Interval | Number") -> "Interval":
        return self + (-self._coerce(other))

    def __rsub__(self, other: Number) -> "Interval":
        return self._coerce(other) - self

    def __mul__(self, other: "Interval | Number") -> "Interval":
        other = self._coerce(other)
        products = (
            self.lower * other.lower,
            self.lower * other.upper,
            self.upper * other.lower,
            self.upper * other.upper,
        )
        return Interval(min(products), max(products))

    __rmul__ = __mul__

    def square(self) -> "Interval":
        """Tight enclosure of ``{v**2 : v in self}``."""
        if self.lower >= 0.0:
            return Interval(self.lower**2, self.upper**2)
        if self.upper <= 0.0:
            return Interval(self.upper**2, self.lower**2)
        return Interval(0.0, max(self.lower**2, self.upper**2))


def interval_sum(values: Iterable[Interval]) -> Interval:
    total = Interval.point(0.0)
    for value in values:
        total = total + value
    return total


__all__ = ["Interval", "interval_sum"]

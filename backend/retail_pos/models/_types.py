from __future__ import annotations

from decimal import Decimal

from ..extensions import db

MONEY_SCALE = 2
QUANTITY_SCALE = 3


def fits_scale(value: Decimal, scale: int) -> bool:
    """True when value has no digits beyond `scale` decimal places."""
    scaled = Decimal(value).scaleb(scale)
    return scaled == scaled.to_integral_value()


class FixedPoint(db.TypeDecorator):
    """
    Decimal stored as a scaled integer (cents for money, thousandths for
    quantities), so SQL comparisons and arithmetic stay exact on every
    backend, SQLite included.
    """

    impl = db.BigInteger
    cache_ok = True

    def __init__(self, scale: int):
        super().__init__()
        self.scale = scale

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        if not fits_scale(value, self.scale):
            raise ValueError(f"{value} has more than {self.scale} decimal places")
        return int(value.scaleb(self.scale))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(int(value)).scaleb(-self.scale)


Money = FixedPoint(MONEY_SCALE)
Quantity = FixedPoint(QUANTITY_SCALE)


def as_number(value: Decimal | None) -> float | None:
    """JSON-friendly rendering of a fixed-point column value."""
    if value is None:
        return None
    return float(value)

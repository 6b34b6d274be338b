"""
Dialect-aware database types.

- UniversalJSON: PostgreSQL JSONB when available, generic JSON elsewhere.
- QuantizedDecimal: fixed-scale Decimal column that always loads back
  quantized with ROUND_HALF_UP, so SQLite float storage never leaks
  binary noise into scores and percentages.
"""
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import JSON, Numeric
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator
from sqlalchemy.engine import Dialect


QUANTIZER_1DP = Decimal("0.1")      # Course progress percentage
QUANTIZER_2DP = Decimal("0.01")     # Scores and attempt percentage


def quantize(value, quantizer: Decimal = QUANTIZER_2DP) -> Decimal:
    """Round half up to the quantizer's scale."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(quantizer, rounding=ROUND_HALF_UP)


class UniversalJSON(TypeDecorator):
    """
    Uses JSONB for PostgreSQL.
    Uses JSON for SQLite and others.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


class QuantizedDecimal(TypeDecorator):
    """
    Numeric(precision, scale) that round-trips as a quantized Decimal.
    """
    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 10, scale: int = 2):
        super().__init__(precision=precision, scale=scale, asdecimal=True)
        self._quantizer = Decimal(1).scaleb(-scale)

    def process_bind_param(self, value, dialect: Dialect):
        if value is None:
            return None
        return quantize(value, self._quantizer)

    def process_result_value(self, value, dialect: Dialect):
        if value is None:
            return None
        return quantize(value, self._quantizer)

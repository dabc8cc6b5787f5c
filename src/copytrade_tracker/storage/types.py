"""Exact decimal column type.

PostgreSQL stores NUMERIC natively. SQLite has no decimal storage class and
SQLAlchemy's SQLite Numeric goes through float, so on SQLite the value is
kept as its decimal string instead.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy.types import Numeric, String, TypeDecorator


class ExactDecimal(TypeDecorator):
    impl = Numeric
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(80))
        return dialect.type_descriptor(Numeric(asdecimal=True))

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value: Any, dialect: Any) -> Decimal | None:  # noqa: ARG002
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))

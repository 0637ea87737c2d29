"""
Dialect-compiled SQL expressions.

Date arithmetic that must run inside the guarded UPDATE statements, so the
new value is computed from the row as locked, not from a stale read.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, literal
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.compiler import SQLCompiler
from sqlalchemy.sql.functions import FunctionElement


class one_month_after(FunctionElement[datetime]):
    """
    max(coalesce(expiry, now), now) plus one calendar month.

    An expired or missing expiry restarts from now; a future expiry is extended.
    """

    type = DateTime(timezone=True)
    name = "one_month_after"
    inherit_cache = True

    def __init__(self, expiry: Any, now: datetime) -> None:
        super().__init__(
            expiry,
            literal(now, DateTime(timezone=True)),
            literal(now, DateTime(timezone=True)),
        )


def _arguments(element: one_month_after, compiler: SQLCompiler, **kw: Any) -> list[str]:
    return [compiler.process(clause, **kw) for clause in element.clauses]


@compiles(one_month_after)
def _compile_default(element: one_month_after, compiler: SQLCompiler, **kw: Any) -> str:
    expiry, now_a, now_b = _arguments(element, compiler, **kw)
    return f"GREATEST(COALESCE({expiry}, {now_a}), {now_b}) + INTERVAL '1 month'"


@compiles(one_month_after, "sqlite")
def _compile_sqlite(element: one_month_after, compiler: SQLCompiler, **kw: Any) -> str:
    expiry, now_a, now_b = _arguments(element, compiler, **kw)
    return f"datetime(MAX(COALESCE({expiry}, {now_a}), {now_b}), '+1 month')"

"""
meta_query: filter rows by their key/value meta.

    {
        "relation": "AND",
        "queries": [
            {"key": "color", "value": "red"},
            {"key": "price", "value": 10, "compare": ">="},
            {"key": "archived", "compare": "NOT EXISTS"},
        ],
    }

Each clause becomes an ``id IN (subquery)`` (or ``NOT IN`` for
``NOT EXISTS``) against the meta table; clauses are joined with the relation.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Float, and_, cast, not_, or_, select

from hookcms.exceptions import ValidationError
from hookcms.utils.json_utils import normalize_value

COMPARES = ("=", "!=", ">", ">=", "<", "<=", "LIKE", "NOT LIKE", "IN", "NOT IN", "EXISTS", "NOT EXISTS")


def _numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _value_condition(column, compare: str, value: Any):
    if compare == "=":
        return column == normalize_value(value)
    if compare == "!=":
        return column != normalize_value(value)
    if compare in (">", ">=", "<", "<="):
        lhs = cast(column, Float) if _numeric(value) else column
        rhs = value if _numeric(value) else normalize_value(value)
        return {">": lhs > rhs, ">=": lhs >= rhs, "<": lhs < rhs, "<=": lhs <= rhs}[compare]
    if compare == "LIKE":
        return column.like(f"%{value}%")
    if compare == "NOT LIKE":
        return not_(column.like(f"%{value}%"))
    if compare in ("IN", "NOT IN"):
        if not isinstance(value, (list, tuple)):
            raise ValidationError(f"meta_query {compare} expects a list value", field="meta_query")
        values = [normalize_value(item) for item in value]
        return column.in_(values) if compare == "IN" else column.not_in(values)
    return None


def build_meta_condition(id_column, meta_model, owner_column: str, meta_query: dict[str, Any] | None):
    """Return a SQL condition on ``id_column`` or None for an empty query."""
    if not meta_query:
        return None
    relation = str(meta_query.get("relation") or "AND").upper()
    if relation not in ("AND", "OR"):
        raise ValidationError("meta_query relation must be AND or OR", field="meta_query")

    owner = getattr(meta_model, owner_column)
    conditions = []
    for clause in meta_query.get("queries") or []:
        key = clause.get("key")
        if not key:
            raise ValidationError("meta_query clauses need a key", field="meta_query")
        compare = str(clause.get("compare") or "=").upper()
        if compare not in COMPARES:
            raise ValidationError(f"Unsupported meta_query compare: {compare}", field="meta_query")

        subquery = select(owner).where(meta_model.field_slug == key)
        if compare == "NOT EXISTS":
            conditions.append(id_column.not_in(subquery))
            continue

        value_condition = _value_condition(meta_model.value, compare, clause.get("value"))
        if value_condition is not None:
            subquery = subquery.where(value_condition)
        conditions.append(id_column.in_(subquery))

    if not conditions:
        return None
    return and_(*conditions) if relation == "AND" else or_(*conditions)

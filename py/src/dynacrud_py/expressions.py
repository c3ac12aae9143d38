from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .errors import ValidationError
from .model import UNSET
from .query import Condition, ConditionExpression, ConditionGroup, SortFilter
from .validation import split_list_index, validate_field_name

ID_ALIAS = "#id"
KEY_ATTRIBUTE = "id"

_COMPARISONS = {"=", "<>", "<", "<=", ">", ">="}
MaxInValues = 100


@dataclass
class ExpressionContext:
    """Accumulates the alias maps shared by every expression of one request.

    Name aliases are reused per (prefix, attribute name); value placeholders
    are always fresh. Prefixes used by the builders never overlap, so any mix
    of projection, key, condition, filter and update expressions can share a
    context.
    """

    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)
    _name_refs: dict[tuple[str, str], str] = field(default_factory=dict, repr=False)
    _counters: dict[str, int] = field(default_factory=dict, repr=False)

    def next_index(self, prefix: str) -> int:
        n = self._counters.get(prefix, 0)
        self._counters[prefix] = n + 1
        return n

    def name(self, prefix: str, attribute: str) -> str:
        ref = self._name_refs.get((prefix, attribute))
        if ref is None:
            ref = f"#{prefix}{self.next_index('#' + prefix)}"
            self._name_refs[(prefix, attribute)] = ref
            self.names[ref] = attribute
        return ref

    def path(self, prefix: str, path: str) -> str:
        validate_field_name(path)
        refs = []
        for segment in path.split("."):
            attribute, suffix = split_list_index(segment)
            refs.append(self.name(prefix, attribute) + suffix)
        return ".".join(refs)

    def value(self, prefix: str, value: Any) -> str:
        ref = f":{prefix}{self.next_index(':' + prefix)}"
        self.values[ref] = value
        return ref

    def id_ref(self) -> str:
        self.names[ID_ALIAS] = KEY_ATTRIBUTE
        return ID_ALIAS


def build_projection(paths: Sequence[str] | None, ctx: ExpressionContext) -> str | None:
    """Alias each requested path, dropping duplicates and paths covered by a shorter one.

    ``["a.b", "a.b.c", "x"]`` projects ``a.b`` and ``x``. ``None`` or an empty
    list means every attribute.
    """
    if not paths:
        return None

    for p in paths:
        validate_field_name(p)

    kept: list[str] = []
    for p in dict.fromkeys(paths):
        if any(_covers(other, p) for other in paths if other != p):
            continue
        kept.append(p)

    refs: list[str] = []
    for i, p in enumerate(kept):
        parts = []
        for j, segment in enumerate(p.split(".")):
            attribute, suffix = split_list_index(segment)
            ref = f"#p{i}x{j}"
            ctx.names[ref] = attribute
            parts.append(ref + suffix)
        refs.append(".".join(parts))
    return ", ".join(refs)


def _covers(prefix: str, path: str) -> bool:
    return path.startswith(prefix + ".") or path.startswith(prefix + "[")


def build_key_condition(
    key: Mapping[str, Any],
    sort: SortFilter | None,
    ctx: ExpressionContext,
) -> str:
    if not key:
        raise ValidationError("key condition requires at least one key attribute")

    clauses: list[str] = []
    for i, (attribute, value) in enumerate(key.items()):
        validate_field_name(attribute)
        ctx.names[f"#k{i}"] = attribute
        ctx.values[f":k{i}"] = value
        clauses.append(f"#k{i} = :k{i}")

    if sort is not None:
        clauses.append(_sort_clause(sort, ctx))

    return " AND ".join(clauses)


def _sort_clause(sort: SortFilter, ctx: ExpressionContext) -> str:
    validate_field_name(sort.name)
    ctx.names["#kr"] = sort.name

    low, high = sort.from_, sort.to
    if low is not None and high is not None:
        if low == high:
            ctx.values[":krv"] = low
            return "#kr = :krv"
        ctx.values[":krv0"] = low
        ctx.values[":krv1"] = high
        return "#kr BETWEEN :krv0 AND :krv1"
    if high is not None:
        ctx.values[":krv"] = high
        return "#kr <= :krv"

    ctx.values[":krv"] = low if low is not None else 0
    return "#kr >= :krv"


def render_condition(expr: ConditionExpression, ctx: ExpressionContext, prefix: str) -> str:
    if isinstance(expr, ConditionGroup):
        if not expr.conditions:
            raise ValidationError("condition group is empty")
        parts = [render_condition(c, ctx, prefix) for c in expr.conditions]
        rendered = parts[0] if len(parts) == 1 else "(" + f" {expr.op} ".join(parts) + ")"
        return f"NOT {_parenthesize(rendered)}" if expr.negate else rendered

    if not isinstance(expr, Condition):
        raise ValidationError(f"invalid condition node: {type(expr).__name__}")

    name = ctx.path(prefix, expr.field)
    op = expr.op
    vals = expr.values

    if op in _COMPARISONS:
        _require_values(expr, 1)
        return f"{name} {op} {ctx.value(prefix, vals[0])}"

    if op == "between":
        _require_values(expr, 2)
        return f"{name} BETWEEN {ctx.value(prefix, vals[0])} AND {ctx.value(prefix, vals[1])}"

    if op == "in":
        if not vals:
            raise ValidationError("IN requires at least one value")
        if len(vals) > MaxInValues:
            raise ValidationError(f"IN supports at most {MaxInValues} values")
        return f"{name} IN (" + ", ".join(ctx.value(prefix, v) for v in vals) + ")"

    if op in {"begins_with", "contains"}:
        _require_values(expr, 1)
        return f"{op}({name}, {ctx.value(prefix, vals[0])})"

    if op == "exists":
        _require_values(expr, 0)
        return f"attribute_exists({name})"

    if op == "not_exists":
        _require_values(expr, 0)
        return f"attribute_not_exists({name})"

    raise ValidationError(f"unsupported condition operator: {op}")


def _require_values(expr: Condition, count: int) -> None:
    if len(expr.values) != count:
        raise ValidationError(f"{expr.op} on {expr.field} takes {count} value(s), got {len(expr.values)}")


def _parenthesize(rendered: str) -> str:
    return rendered if rendered.startswith("(") and rendered.endswith(")") else f"({rendered})"


def item_condition(
    ctx: ExpressionContext,
    *,
    must_exist: bool,
    condition: ConditionExpression | None = None,
) -> str:
    """``attribute_(not_)exists(#id)``, ANDed with the caller's condition when given."""
    guard = "attribute_exists" if must_exist else "attribute_not_exists"
    rendered = f"{guard}({ctx.id_ref()})"
    if condition is None:
        return rendered
    return f"{rendered} AND {_parenthesize(render_condition(condition, ctx, 'c'))}"


def is_remove_value(value: Any) -> bool:
    return value is None or (isinstance(value, (list, tuple, set, frozenset)) and len(value) == 0)


def build_update(
    model: Mapping[str, Any],
    ctx: ExpressionContext,
    increments: Mapping[str, Any] | None = None,
    removes: Iterable[str] = (),
) -> str:
    """Render an UpdateExpression from a partial model.

    Per field: ``None`` or an empty list/tuple/set removes the attribute,
    ``UNSET`` leaves it untouched, anything else is SET. ``increments`` add
    to numeric attributes and ``removes`` names extra attributes to REMOVE.
    """
    set_parts: list[str] = []
    remove_parts: list[str] = []

    for attribute, value in model.items():
        if value is UNSET:
            continue
        _reject_key_update(attribute)
        ref = ctx.path("u", attribute)
        if is_remove_value(value):
            remove_parts.append(ref)
        else:
            set_parts.append(f"{ref} = {ctx.value('u', value)}")

    for attribute, amount in (increments or {}).items():
        _reject_key_update(attribute)
        ref = ctx.path("u", attribute)
        set_parts.append(f"{ref} = {ref} + {ctx.value('u', amount)}")

    for attribute in removes:
        _reject_key_update(attribute)
        ref = ctx.path("u", attribute)
        if ref not in remove_parts:
            remove_parts.append(ref)

    clauses: list[str] = []
    if set_parts:
        clauses.append("SET " + ", ".join(set_parts))
    if remove_parts:
        clauses.append("REMOVE " + ", ".join(remove_parts))
    if not clauses:
        raise ValidationError("no updates provided")
    return " ".join(clauses)


def _reject_key_update(attribute: str) -> None:
    if attribute == KEY_ATTRIBUTE:
        raise ValidationError(f"cannot update key attribute: {attribute}")

"""
Query Filter Compiler

Turns the query string of a list endpoint into a QueryPlan and applies the
plan to a SQLAlchemy query. Every list endpoint (doctors, patients,
appointments, prescriptions, reviews, users) goes through here.

Query string conventions:
    specialization=Cardiology         equality
    consultation_fee[gte]=200         range (gte, gt, lte, lt)
    clinic.city=Cairo                 dotted path into an embedded object
    q=cairo                           free text, OR-ed across search fields
    sort=-rating,experience           "-" prefix means descending
    fields=specialization,rating      projection allow-list
    page=2&limit=20                   pagination

Each resource declares an explicit allow-list of fields (and the column
behind each public path). Anything outside the allow-list, an unknown
operator, a range operator on a non-orderable field, or a value that does
not coerce to the field type is rejected with a per-field error map.
"""

import operator
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from sqlalchemy import and_, or_

from .errors import ValidationFailedError

RESERVED_KEYS = frozenset({"page", "sort", "limit", "fields"})
SEARCH_KEY = "q"

OPERATORS = {
    "eq": operator.eq,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}
RANGE_OPERATORS = frozenset({"gt", "gte", "lt", "lte"})

DEFAULT_SORT = (("created_at", "desc"),)

_KEY_PATTERN = re.compile(r"(?P<field>[A-Za-z_][\w.]*)(?:\[(?P<op>[^\]]*)\])?")


@dataclass(frozen=True)
class FieldSpec:
    """A filterable / sortable public field and the model column behind it."""
    column: str
    type: type = str

    @property
    def orderable(self) -> bool:
        return self.type in (int, float, date, datetime)


@dataclass(frozen=True)
class Condition:
    field: str
    op: str  # "eq", "gt", "gte", "lt", "lte", or "match" for lookups
    value: Any


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class QueryPlan:
    conditions: Tuple[Condition, ...]
    sort: Tuple[Tuple[str, str], ...]
    projection: Optional[Tuple[str, ...]]
    pagination: Pagination
    search: Optional[str] = None

    @property
    def filter(self) -> Dict[str, Dict[str, Any]]:
        """Conditions grouped by field path: {"rating": {"gte": 4.0}}."""
        grouped: Dict[str, Dict[str, Any]] = {}
        for condition in self.conditions:
            grouped.setdefault(condition.field, {})[condition.op] = condition.value
        return grouped

    @property
    def page(self) -> int:
        return self.pagination.page

    @property
    def limit(self) -> int:
        return self.pagination.limit

    @property
    def skip(self) -> int:
        return self.pagination.skip


@dataclass
class ResourceQuery:
    """
    Declares what a list endpoint accepts.

    fields:      public path -> FieldSpec, used for filters and sort keys
    lookups:     filters resolved through a related table, e.g. doctor
                 "name" -> user_id IN (SELECT id FROM users WHERE name ILIKE ...)
    search:      field paths and lookup names OR-ed together for "q"
    projectable: top-level response keys accepted by "fields"
    """
    name: str
    model: Any
    fields: Mapping[str, FieldSpec]
    default_limit: int = 100
    lookups: Mapping[str, Callable[[str], Any]] = field(default_factory=dict)
    search: Tuple[str, ...] = ()
    projectable: FrozenSet[str] = frozenset()


@dataclass
class Page:
    items: List[Any]
    total: int
    page: int
    limit: int


# =============================================================================
# COMPILATION
# =============================================================================

def parse_positive_int(value: Optional[str], default: int) -> int:
    """Parse a page/limit value, falling back to the default on junk or non-positive input."""
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 1 else default


def coerce_value(raw: str, target: type) -> Any:
    """Coerce a query-string value to the field type; raises ValueError."""
    value = raw.strip() if isinstance(raw, str) else raw
    if target is str:
        return value
    if target is bool:
        lowered = str(value).lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if target is int:
        return int(value)
    if target is float:
        return float(value)
    if target is date:
        return date.fromisoformat(value)
    if target is datetime:
        return datetime.fromisoformat(value)
    raise ValueError(f"unsupported field type {target!r}")


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def compile_query(
    raw: Mapping[str, str],
    resource: ResourceQuery,
    forced: Optional[Mapping[str, Any]] = None,
) -> QueryPlan:
    """
    Compile raw query parameters into a QueryPlan.

    `forced` holds server-enforced equality conditions (the caller's own
    doctor_id / patient_id); they replace any caller-supplied condition on
    the same field instead of being rejected.
    """
    errors: Dict[str, str] = {}
    conditions: Dict[Tuple[str, str], Condition] = {}
    search = None

    for key, value in raw.items():
        if key in RESERVED_KEYS:
            continue

        if key == SEARCH_KEY and resource.search:
            search = value.strip() or None
            continue

        if key in resource.lookups:
            if value.strip():
                conditions[(key, "match")] = Condition(key, "match", value.strip())
            continue

        match = _KEY_PATTERN.fullmatch(key)
        if not match:
            errors[key] = "Unsupported filter syntax."
            continue

        name, op = match.group("field"), match.group("op")
        op = "eq" if op is None else op
        spec = resource.fields.get(name)
        if spec is None:
            errors[name] = f"Filtering on '{name}' is not allowed."
            continue
        if op not in OPERATORS:
            errors[key] = f"Unsupported operator '{op}'."
            continue
        if op in RANGE_OPERATORS and not spec.orderable:
            errors[key] = f"Operator '{op}' is not supported for '{name}'."
            continue

        try:
            coerced = coerce_value(value, spec.type)
        except ValueError:
            errors[key] = f"Invalid value for '{name}'."
            continue
        conditions[(name, op)] = Condition(name, op, coerced)

    for name, value in (forced or {}).items():
        for key in [key for key in conditions if key[0] == name]:
            del conditions[key]
        conditions[(name, "eq")] = Condition(name, "eq", value)

    sort = []
    for entry in _split_list(raw.get("sort")):
        direction = "desc" if entry.startswith("-") else "asc"
        name = entry.lstrip("-+")
        if name not in resource.fields:
            errors["sort"] = f"Sorting by '{name}' is not allowed."
            continue
        sort.append((name, direction))

    projection = None
    requested = _split_list(raw.get("fields"))
    if requested:
        unknown = [name for name in requested if name.split(".")[0] not in resource.projectable]
        if unknown:
            errors["fields"] = f"Unknown fields: {', '.join(unknown)}."
        projection = tuple(dict.fromkeys(requested))

    if errors:
        raise ValidationFailedError("Invalid query parameters.", field_errors=errors)

    return QueryPlan(
        conditions=tuple(conditions[key] for key in sorted(conditions)),
        sort=tuple(sort) or DEFAULT_SORT,
        projection=projection,
        pagination=Pagination(
            page=parse_positive_int(raw.get("page"), 1),
            limit=parse_positive_int(raw.get("limit"), resource.default_limit),
        ),
        search=search,
    )


# =============================================================================
# EXECUTION
# =============================================================================

def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def contains(column, term: str):
    """Case-insensitive substring match, with LIKE wildcards escaped."""
    return column.ilike(_like_pattern(term), escape="\\")


def _column(resource: ResourceQuery, name: str):
    return getattr(resource.model, resource.fields[name].column)


def build_criteria(plan: QueryPlan, resource: ResourceQuery) -> list:
    criteria = []
    for condition in plan.conditions:
        if condition.op == "match":
            criteria.append(resource.lookups[condition.field](condition.value))
        else:
            criteria.append(OPERATORS[condition.op](_column(resource, condition.field), condition.value))

    if plan.search:
        alternatives = []
        for name in resource.search:
            if name in resource.lookups:
                alternatives.append(resource.lookups[name](plan.search))
            else:
                alternatives.append(contains(_column(resource, name), plan.search))
        criteria.append(or_(*alternatives))
    return criteria


def apply_plan(query, plan: QueryPlan, resource: ResourceQuery, paginate: bool = True):
    """Apply filters, ordering and (optionally) offset/limit to a SQLAlchemy query."""
    criteria = build_criteria(plan, resource)
    if criteria:
        query = query.filter(and_(*criteria))

    ordering = []
    for name, direction in plan.sort:
        column = _column(resource, name)
        ordering.append(column.desc() if direction == "desc" else column.asc())
    # Stable order for rows sharing the same sort key
    primary_key = resource.model.id
    ordering.append(primary_key.desc() if plan.sort[0][1] == "desc" else primary_key.asc())
    query = query.order_by(*ordering)

    if paginate:
        query = query.offset(plan.skip).limit(plan.limit)
    return query


def fetch_page(query, plan: QueryPlan, resource: ResourceQuery) -> Page:
    """Run the plan and also count every matching row."""
    criteria = build_criteria(plan, resource)
    total = query.filter(and_(*criteria)).count() if criteria else query.count()
    items = apply_plan(query, plan, resource).all()
    return Page(items=items, total=total, page=plan.page, limit=plan.limit)


# =============================================================================
# PROJECTION
# =============================================================================

def project(document: Dict[str, Any], projection: Optional[Tuple[str, ...]]) -> Dict[str, Any]:
    """Keep only the requested keys (dotted paths allowed); "id" is always kept."""
    if not projection:
        return document

    result: Dict[str, Any] = {"id": document["id"]} if "id" in document else {}
    for path in projection:
        parts = path.split(".")
        source, target = document, result
        for part in parts[:-1]:
            source = source.get(part)
            if not isinstance(source, dict):
                break
            target = target.setdefault(part, {})
        else:
            if parts[-1] in source:
                target[parts[-1]] = source[parts[-1]]
    return result

"""Typed filter predicates for the PostgREST-style graph store.

Every predicate kind serializes in two forms:
- top-level query parameter: `column=op.value`
- inside an or-group: `column.op.value`

Column paths are checked against a fixed grammar (`col`, `col->key`, `col->>key`) and emitted
raw so JSON path separators reach the server untouched. Values are made grammar-safe first
(search terms are stripped of reserved characters, other values are double-quoted when they
contain any) and then percent-encoded for transport.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, List, Sequence, Tuple, Union
from urllib.parse import quote

_PATH_RE = re.compile(r"^[a-z_][a-z0-9_]*(?:->>?[a-z_][a-z0-9_]*)*$")
_PLAIN_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

# Characters with meaning inside value lists and or-groups.
_RESERVED = set(',()"\\')
_TERM_STRIP_RE = re.compile(r'[,()*"\\%\x00-\x1f]')
_WS_RE = re.compile(r"\s+")

MAX_TERM_CHARS = 200


@dataclass(frozen=True)
class Column:
    path: str

    def __post_init__(self) -> None:
        if not isinstance(self.path, str) or not _PATH_RE.match(self.path):
            raise ValueError(f"invalid column path: {self.path!r}")

    @property
    def is_plain(self) -> bool:
        return bool(_PLAIN_RE.match(self.path))

    @property
    def segments(self) -> List[str]:
        return re.split(r"->>?", self.path)


ColumnLike = Union[str, Column]


def col(path: ColumnLike) -> Column:
    return path if isinstance(path, Column) else Column(path)


def sanitize_term(term: Any) -> str:
    """Strip grammar/wildcard characters from a free-text search term."""
    txt = _TERM_STRIP_RE.sub(" ", str(term or ""))
    txt = _WS_RE.sub(" ", txt).strip()
    return txt[:MAX_TERM_CHARS]


def _scalar_text(v: Any) -> str:
    if isinstance(v, Enum):
        return str(v.value)
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, datetime):
        return v.isoformat()
    return str(v)


def _quote_reserved(s: str) -> str:
    if not any(ch in _RESERVED for ch in s):
        return s
    escaped = s.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def encode_value(v: Any, *, nested: bool = False) -> str:
    """
    Percent-encode a value for transport.

    Top-level filters read their value to the end of the parameter, so only values placed in a
    list or an or-group (`nested=True`) are double-quoted when they carry reserved characters.
    """
    txt = _scalar_text(v)
    return quote(_quote_reserved(txt) if nested else txt, safe="")


class Predicate:
    def to_param(self) -> Tuple[str, str]:
        raise NotImplementedError

    def to_inner(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class _Compare(Predicate):
    column: Column
    value: Any

    op = ""

    def to_param(self) -> Tuple[str, str]:
        return self.column.path, f"{self.op}.{encode_value(self.value)}"

    def to_inner(self) -> str:
        return f"{self.column.path}.{self.op}.{encode_value(self.value, nested=True)}"


class Eq(_Compare):
    op = "eq"


class Neq(_Compare):
    op = "neq"


class Gte(_Compare):
    op = "gte"


class Lte(_Compare):
    op = "lte"


@dataclass(frozen=True)
class ILike(Predicate):
    """Case-insensitive substring match."""

    column: Column
    term: str

    @property
    def clean_term(self) -> str:
        return sanitize_term(self.term)

    def _rhs(self) -> str:
        return f"ilike.*{quote(self.clean_term, safe='')}*"

    def to_param(self) -> Tuple[str, str]:
        return self.column.path, self._rhs()

    def to_inner(self) -> str:
        return f"{self.column.path}.{self._rhs()}"


@dataclass(frozen=True)
class In(Predicate):
    column: Column
    values: Tuple[Any, ...]

    def _rhs(self) -> str:
        return "in.(" + ",".join(encode_value(v, nested=True) for v in self.values) + ")"

    def to_param(self) -> Tuple[str, str]:
        return self.column.path, self._rhs()

    def to_inner(self) -> str:
        return f"{self.column.path}.{self._rhs()}"


@dataclass(frozen=True)
class Contains(Predicate):
    """JSON array containment (`cs`)."""

    column: Column
    values: Tuple[Any, ...]

    def to_param(self) -> Tuple[str, str]:
        payload = json.dumps([_scalar_text(v) for v in self.values], ensure_ascii=False, separators=(",", ":"))
        return self.column.path, f"cs.{quote(payload, safe='')}"

    def to_inner(self) -> str:
        # JSON literals collide with the or-group separator.
        raise ValueError("containment predicates are not allowed inside or-groups")


@dataclass(frozen=True)
class Or(Predicate):
    predicates: Tuple[Predicate, ...]

    def __post_init__(self) -> None:
        if not self.predicates:
            raise ValueError("or-group needs at least one predicate")
        for p in self.predicates:
            p.to_inner()

    def to_param(self) -> Tuple[str, str]:
        return "or", "(" + ",".join(p.to_inner() for p in self.predicates) + ")"

    def to_inner(self) -> str:
        return "or(" + ",".join(p.to_inner() for p in self.predicates) + ")"


@dataclass(frozen=True)
class Order:
    column: Column
    descending: bool = True

    def __post_init__(self) -> None:
        if not self.column.is_plain:
            raise ValueError(f"order column must be a plain column: {self.column.path}")

    def to_param(self) -> Tuple[str, str]:
        return "order", f"{self.column.path}.{'desc' if self.descending else 'asc'}"


# Small constructors so call sites read like the filters they express.


def eq(column: ColumnLike, value: Any) -> Eq:
    return Eq(col(column), value)


def neq(column: ColumnLike, value: Any) -> Neq:
    return Neq(col(column), value)


def gte(column: ColumnLike, value: Any) -> Gte:
    return Gte(col(column), value)


def lte(column: ColumnLike, value: Any) -> Lte:
    return Lte(col(column), value)


def ilike(column: ColumnLike, term: str) -> ILike:
    return ILike(col(column), term)


def in_(column: ColumnLike, values: Iterable[Any]) -> In:
    return In(col(column), tuple(values))


def contains(column: ColumnLike, values: Iterable[Any]) -> Contains:
    return Contains(col(column), tuple(values))


def or_(*predicates: Predicate) -> Or:
    return Or(tuple(predicates))


def desc(column: ColumnLike) -> Order:
    return Order(col(column), descending=True)


def asc(column: ColumnLike) -> Order:
    return Order(col(column), descending=False)


def build_query_string(
    *,
    select: Sequence[str],
    filters: Sequence[Predicate] = (),
    order: Union[Order, None] = None,
    limit: Union[int, None] = None,
) -> str:
    """Serialize a read into the transport query string. The only place filters become text."""
    fields = [col(s) for s in select] if select else []
    for f in fields:
        if not f.is_plain:
            raise ValueError(f"select field must be a plain column: {f.path}")
    parts = [f"select={','.join(f.path for f in fields) or '*'}"]
    for p in filters:
        k, v = p.to_param()
        parts.append(f"{k}={v}")
    if order is not None:
        k, v = order.to_param()
        parts.append(f"{k}={v}")
    if limit is not None:
        parts.append(f"limit={max(1, int(limit))}")
    return "&".join(parts)

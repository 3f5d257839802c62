"""Listing queries over a collection: filters, sort orders and pagination tokens."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Sequence

from syncstore.errors import InvalidOffsetError, ValidationError
from syncstore.types import Bso, Tenant, validate_bso_id

SORT_NEWEST = "newest"
SORT_OLDEST = "oldest"
SORT_INDEX = "index"
SORTS = (SORT_NEWEST, SORT_OLDEST, SORT_INDEX)

MAX_IDS_PER_QUERY = 100

_ORDER_BY = {
    SORT_NEWEST: "modified DESC, bso_id ASC",
    SORT_OLDEST: "modified ASC, bso_id ASC",
    SORT_INDEX: "sortindex DESC, modified DESC, bso_id ASC",
}


@dataclass(frozen=True)
class BsoQuery:
    """Filter, order and window for a collection listing.

    ``newer``/``older`` bound ``modified`` and ``expires_after``/``expires_before``
    bound ``expiry`` (all exclusive, epoch milliseconds). ``offset`` is either a
    plain row offset or a token returned as ``Page.next_offset``.
    """

    ids: Sequence[str] | None = None
    newer: int | None = None
    older: int | None = None
    expires_after: int | None = None
    expires_before: int | None = None
    sort: str = SORT_NEWEST
    limit: int | None = None
    offset: int | str | None = None

    def __post_init__(self) -> None:
        if self.sort not in SORTS:
            raise ValidationError(f"Unsupported sort {self.sort!r}; expected one of {SORTS}")
        if self.limit is not None and self.limit < 0:
            raise ValidationError("limit must be non-negative")
        if isinstance(self.offset, int) and self.offset < 0:
            raise ValidationError("offset must be non-negative")
        if self.ids is not None:
            if len(self.ids) > MAX_IDS_PER_QUERY:
                raise ValidationError(f"At most {MAX_IDS_PER_QUERY} ids may be requested")
            for bso_id in self.ids:
                validate_bso_id(bso_id)


@dataclass
class Page:
    items: list[Bso] = field(default_factory=list)
    next_offset: str | None = None


@dataclass(frozen=True)
class _Window:
    """A query with its offset token decoded into concrete bounds."""

    query: BsoQuery
    skip: int
    newer_eq: int | None = None
    older_eq: int | None = None


def decode_offset(query: BsoQuery) -> _Window:
    """Turn ``query.offset`` into a row skip plus an optional timestamp bound.

    Index ordering uses plain numeric offsets. Timestamp orderings use a
    ``"<bound>:<skip>"`` token: resume at rows whose ``modified`` is at or past
    ``bound`` and skip the ``skip`` rows sharing that bound already returned.
    A page reached by a plain row offset may hand back a plain offset again
    when it cannot place its last row relative to the skipped ones.
    """
    offset = query.offset
    if offset is None:
        return _Window(query=query, skip=0)
    if isinstance(offset, int):
        return _Window(query=query, skip=offset)
    try:
        if query.sort == SORT_INDEX or ":" not in offset:
            skip = int(offset)
            if skip < 0:
                raise ValueError(offset)
            return _Window(query=query, skip=skip)
        raw_bound, raw_skip = offset.split(":", 1)
        bound, skip = int(raw_bound), int(raw_skip)
    except ValueError:
        raise InvalidOffsetError(offset)
    if skip < 0:
        raise InvalidOffsetError(offset)
    # A token can only ever point inside the window it was produced from.
    if query.newer is not None and bound <= query.newer:
        raise InvalidOffsetError(offset)
    if query.older is not None and bound >= query.older:
        raise InvalidOffsetError(offset)
    if query.sort == SORT_OLDEST:
        return _Window(query=query, skip=skip, newer_eq=bound)
    return _Window(query=query, skip=skip, older_eq=bound)


def compile_query(
    window: _Window,
    tenant: Tenant,
    collection_id: int,
    now_ms: int,
    *,
    columns: str = "bso_id, sortindex, payload, modified, expiry",
    extra: int = 1,
) -> tuple[str, list[Any]]:
    """Build the SELECT for a window; fetches ``extra`` rows past the limit."""
    q = window.query
    clauses = ["fxa_uid = ?", "fxa_kid = ?", "collection_id = ?", "expiry > ?"]
    params: list[Any] = [tenant.fxa_uid, tenant.fxa_kid, collection_id, now_ms]
    if q.ids is not None:
        if not q.ids:
            clauses.append("0")
        else:
            clauses.append(f"bso_id IN ({', '.join('?' for _ in q.ids)})")
            params.extend(q.ids)
    if q.newer is not None:
        clauses.append("modified > ?")
        params.append(q.newer)
    if q.older is not None:
        clauses.append("modified < ?")
        params.append(q.older)
    if window.newer_eq is not None:
        clauses.append("modified >= ?")
        params.append(window.newer_eq)
    if window.older_eq is not None:
        clauses.append("modified <= ?")
        params.append(window.older_eq)
    if q.expires_after is not None:
        clauses.append("expiry > ?")
        params.append(q.expires_after)
    if q.expires_before is not None:
        clauses.append("expiry < ?")
        params.append(q.expires_before)

    sql = f"SELECT {columns} FROM bsos WHERE {' AND '.join(clauses)} ORDER BY {_ORDER_BY[q.sort]}"
    if q.limit is not None:
        sql += " LIMIT ?"
        params.append(q.limit + extra)
    else:
        sql += " LIMIT -1"
    if window.skip:
        sql += " OFFSET ?"
        params.append(window.skip)
    return sql, params


def encode_next_offset(window: _Window, items: Sequence[Bso]) -> str:
    """Build the token that resumes a listing right after ``items``."""
    q = window.query
    if q.sort == SORT_INDEX:
        return str(window.skip + len(items))
    bound = items[-1].modified
    skip = 1
    i = len(items) - 2
    while i >= 0 and items[i].modified == bound:
        skip += 1
        i -= 1
    # Every item shared the bound: rows skipped by the previous offset may share it too.
    if i < 0:
        prev_bound = window.newer_eq if q.sort == SORT_OLDEST else window.older_eq
        if prev_bound is None:
            if window.skip:
                # A plain row offset does not say how many skipped rows share the bound.
                return str(window.skip + len(items))
        elif prev_bound == bound:
            skip += window.skip
    return f"{bound}:{skip}"


def with_offset(query: BsoQuery, offset: int | str | None) -> BsoQuery:
    return replace(query, offset=offset)

"""Tenant identifiers, stored record types and validated input models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from syncstore.config import MAX_TTL
from syncstore.errors import ValidationError

MAX_SORTINDEX = 999999999
BSO_ID_PATTERN = r"^[ -~]{1,64}$"


@dataclass(frozen=True)
class Tenant:
    """A user's data partition: the opaque (fxa_uid, fxa_kid) pair."""

    fxa_uid: str
    fxa_kid: str

    def __post_init__(self) -> None:
        if not self.fxa_uid or not self.fxa_kid:
            raise ValidationError("Tenant requires non-empty fxa_uid and fxa_kid")

    def __str__(self) -> str:
        return f"{self.fxa_uid}:{self.fxa_kid}"


@dataclass(frozen=True)
class Collection:
    collection_id: int
    name: str


@dataclass(frozen=True)
class UserCollection:
    """Aggregate state for one tenant collection."""

    tenant: Tenant
    collection_id: int
    modified: int
    count: int
    total_bytes: int


@dataclass(frozen=True)
class Bso:
    """A committed Basic Storage Object. Timestamps are epoch milliseconds."""

    id: str
    payload: str
    modified: int
    expiry: int
    sortindex: int | None = None

    @property
    def payload_size(self) -> int:
        return payload_size(self.payload)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sortindex": self.sortindex,
            "payload": self.payload,
            "modified": self.modified,
            "expiry": self.expiry,
        }


@dataclass(frozen=True)
class Batch:
    tenant: Tenant
    collection_id: int
    batch_id: str
    expiry: int


@dataclass(frozen=True)
class BatchBso:
    """A staged batch item; every field may be absent until commit."""

    id: str
    sortindex: int | None = None
    payload: str | None = None
    ttl: int | None = None


@dataclass(frozen=True)
class CommitResult:
    committed_count: int
    modified: int


def payload_size(payload: str) -> int:
    """Size of a payload in bytes as counted against total_bytes and quota."""
    return len(payload.encode("utf-8"))


# --- Input validation ---


class BsoFields(BaseModel):
    """Client-supplied BSO fields. Unset fields leave the stored value untouched."""

    model_config = ConfigDict(extra="forbid", strict=True)

    sortindex: int | None = Field(default=None, ge=-MAX_SORTINDEX, le=MAX_SORTINDEX)
    payload: str | None = None
    ttl: int | None = Field(default=None, gt=0, le=MAX_TTL)

    def supplied(self) -> dict[str, Any]:
        """Return only the fields the caller actually set."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class BatchItem(BsoFields):
    """A BSO addressed by id, as posted in bulk writes and batch appends."""

    id: str = Field(pattern=BSO_ID_PATTERN)

    def supplied(self) -> dict[str, Any]:
        out = super().supplied()
        out.pop("id", None)
        return out


def _format_pydantic_error(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "value"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def parse_fields(data: BsoFields | Mapping[str, Any]) -> BsoFields:
    if isinstance(data, BsoFields):
        return data
    try:
        return BsoFields.model_validate(dict(data))
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid BSO: {_format_pydantic_error(e)}") from e


def parse_item(data: BatchItem | Mapping[str, Any]) -> BatchItem:
    if isinstance(data, BatchItem):
        return data
    try:
        return BatchItem.model_validate(dict(data))
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid BSO: {_format_pydantic_error(e)}") from e


def validate_bso_id(bso_id: str) -> str:
    try:
        return BatchItem(id=bso_id).id
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid BSO id {bso_id!r}") from e

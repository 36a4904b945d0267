from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ──────────────────────────────────────────────────────────────
# Request envelope
# ──────────────────────────────────────────────────────────────

class SyncRequest(BaseModel):
    # fieldName: resolver-style callers send the GraphQL field name
    operation_name: str = Field(validation_alias=AliasChoices("operation_name", "fieldName"))
    arguments: Dict[str, Any] = Field(default_factory=dict)


# ──────────────────────────────────────────────────────────────
# Scan ("syncX") arguments
# ──────────────────────────────────────────────────────────────

class ScanArgs(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)
    # epoch millis of the client's last successful sync
    recency_marker: Optional[int] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("recency_marker", "lastSync"),
    )
    cursor: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("cursor", "nextToken"),
    )


# ──────────────────────────────────────────────────────────────
# Mutation arguments
# ──────────────────────────────────────────────────────────────

class MutationArgs(BaseModel):
    input: Dict[str, Any] = Field(default_factory=dict)


class CreateInput(BaseModel):
    """Domain fields travel as extras."""
    model_config = ConfigDict(extra="allow")

    external_id: Optional[str] = None


class VersionedInput(BaseModel):
    model_config = ConfigDict(extra="allow")

    external_id: str
    version: int = Field(default=0, ge=0)


# ──────────────────────────────────────────────────────────────
# Response envelope
# ──────────────────────────────────────────────────────────────

class ErrorKind(str, Enum):
    CONFLICT = "Conflict"
    INTERNAL_FAILURE = "InternalFailure"


def ok(data: Any) -> dict[str, Any]:
    return {"data": data}


def conflict(data: Any) -> dict[str, Any]:
    return {"data": data, "error_message": "Conflict", "error_kind": ErrorKind.CONFLICT.value}


def internal_failure(message: str) -> dict[str, Any]:
    return {"data": None, "error_message": message, "error_kind": ErrorKind.INTERNAL_FAILURE.value}

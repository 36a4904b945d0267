from __future__ import annotations

from typing import Any, Optional

from datastore_link.core.schema import Relation
from datastore_link.core.time import parse_timestamp

# Storage-only columns never sent to the client.
_HIDDEN = ("id", "source_id", "log_id", "expires_at")


def synthesized_external_id(internal_id: Any) -> str:
    # Rows inserted before the sync columns existed have no external_id.
    return f"datastore-uuid-{internal_id}"


def _as_bool(v: Any) -> bool:
    return bool(v) if v is not None else False


def normalize(row: dict[str, Any], relation: Optional[Relation] = None) -> dict[str, Any]:
    """
    Map a stored row (primary or change-log, optionally joined to its
    parent) onto the wire record.

    Change-log rows carry the primary key in `source_id`; that is what gets
    exposed as `internal_id`.
    """
    internal_id = row["source_id"] if "source_id" in row else row.get("id")

    out = {k: v for k, v in row.items() if k not in _HIDDEN}

    parent_id = parent_deleted = None
    if relation is not None:
        parent_id = out.pop(relation.id_alias, None)
        parent_deleted = out.pop(relation.deleted_alias, None)

    out["external_id"] = row.get("external_id") or synthesized_external_id(internal_id)
    out["internal_id"] = internal_id
    out["version"] = int(row.get("version") or 0)
    out["deleted"] = _as_bool(row.get("deleted"))

    changed = parse_timestamp(row.get("last_changed_at"))
    out["last_changed_at"] = int(changed.timestamp()) if changed is not None else None

    if relation is not None and parent_id is not None and parent_deleted is not None:
        out[relation.name] = {"id": parent_id, "deleted": _as_bool(parent_deleted)}

    return out

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from datastore_link.core.contracts import MutationArgs, ScanArgs, internal_failure
from datastore_link.core.errors import UnknownOperation
from datastore_link.core.schema import COMMENTS, POSTS, Entity
from datastore_link.services.mutations import Mutations
from datastore_link.services.scan import Scanner

logger = logging.getLogger(__name__)


class OpKind(Enum):
    SYNC = "sync"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Operation(Enum):
    """Every operation the client may call, with the table it targets."""

    SYNC_POSTS = ("syncPosts", OpKind.SYNC, POSTS)
    SYNC_COMMENTS = ("syncComments", OpKind.SYNC, COMMENTS)
    CREATE_POST = ("createPost", OpKind.CREATE, POSTS)
    CREATE_COMMENT = ("createComment", OpKind.CREATE, COMMENTS)
    UPDATE_POST = ("updatePost", OpKind.UPDATE, POSTS)
    UPDATE_COMMENT = ("updateComment", OpKind.UPDATE, COMMENTS)
    DELETE_POST = ("deletePost", OpKind.DELETE, POSTS)
    DELETE_COMMENT = ("deleteComment", OpKind.DELETE, COMMENTS)

    def __init__(self, wire_name: str, kind: OpKind, entity: Entity):
        self.wire_name = wire_name
        self.kind = kind
        self.entity = entity

    @classmethod
    def from_name(cls, name: str) -> "Operation":
        for op in cls:
            if op.wire_name == name:
                return op
        raise UnknownOperation(name)


class Dispatcher:
    def __init__(self, *, scanner: Scanner, mutations: Mutations):
        self.scanner = scanner
        self.mutations = mutations

    def dispatch(self, operation_name: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
        """
        Run one operation and shape its envelope.

        Raises UnknownOperation for a name outside the table; any fault from
        the handler itself comes back as an InternalFailure envelope.
        """
        op = Operation.from_name(operation_name)
        arguments = arguments or {}
        logger.info("operation op=%s args=%s", operation_name, arguments)

        try:
            return self._run(op, arguments)
        except Exception as e:
            logger.exception("operation_failed op=%s args=%s", operation_name, arguments)
            return internal_failure(str(e) or type(e).__name__)

    def _run(self, op: Operation, arguments: dict[str, Any]) -> dict[str, Any]:
        if op.kind is OpKind.SYNC:
            return self.scanner.sync(op.entity, ScanArgs.model_validate(arguments))
        if op.kind is OpKind.CREATE:
            return self.mutations.create(op.entity, MutationArgs.model_validate(arguments))
        if op.kind is OpKind.UPDATE:
            return self.mutations.update(op.entity, MutationArgs.model_validate(arguments))
        if op.kind is OpKind.DELETE:
            return self.mutations.delete(op.entity, MutationArgs.model_validate(arguments))
        raise AssertionError(f"unhandled operation kind {op.kind}")

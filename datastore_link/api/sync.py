from __future__ import annotations

import orjson
from fastapi import APIRouter, Depends
from fastapi.responses import Response

from datastore_link.core.contracts import SyncRequest
from datastore_link.core.errors import UnknownOperation, bad_request
from datastore_link.services.dispatcher import Dispatcher

router = APIRouter(prefix="/sync")


def get_dispatcher() -> Dispatcher:
    raise RuntimeError("Dispatcher must be provided by app dependency override")


@router.post("/ops")
def sync_ops(req: SyncRequest, dispatcher: Dispatcher = Depends(get_dispatcher)) -> Response:
    try:
        envelope = dispatcher.dispatch(req.operation_name, req.arguments)
    except UnknownOperation as e:
        bad_request("unknown_operation", str(e))
    return Response(content=orjson.dumps(envelope), media_type="application/json")

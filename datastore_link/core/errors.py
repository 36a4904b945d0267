from __future__ import annotations

from fastapi import HTTPException


class SyncError(Exception):
    """Base class for faults raised by the sync engine."""


class UnknownOperation(SyncError):
    def __init__(self, name: str):
        super().__init__(f"unknown operation {name!r}")
        self.name = name


class UnknownField(SyncError):
    def __init__(self, table: str, fields: list[str]):
        super().__init__(f"unknown field(s) for {table}: {', '.join(fields)}")
        self.table = table
        self.fields = fields


class InvalidCursor(SyncError):
    pass


def bad_request(code: str, message: str):
    raise HTTPException(status_code=400, detail={"code": code, "message": message})


def service_unavailable(code: str, message: str):
    raise HTTPException(status_code=503, detail={"code": code, "message": message})

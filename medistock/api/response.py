# FILE: medistock/api/response.py
from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Type

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from medistock.services.bulk_ops import bulk_status_code


def _plain(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return data


def ok(
    data: Any = None,
    *,
    meta: Optional[Dict[str, Any]] = None,
    status_code: int = 200,
) -> JSONResponse:
    """{"ok": true, "data": ..., "meta": {...}}; meta only when given."""
    payload: Dict[str, Any] = {"ok": True, "data": _plain(data)}
    if meta is not None:
        payload["meta"] = meta
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def err(
    msg: str = "Something went wrong",
    *,
    status_code: int = 400,
    code: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    """{"ok": false, "error": {"msg", "code", "details"}}"""
    payload = {"ok": False, "error": {"msg": msg, "code": code, "details": details}}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def page_meta(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit if limit else 0,
    }


def paged(rows: Iterable[Any], schema: Type[BaseModel], *, page: int, limit: int, total: int) -> JSONResponse:
    """List endpoint: ORM rows serialized through `schema`, pagination in meta."""
    data = [schema.model_validate(r).model_dump() for r in rows]
    return ok(data, meta=page_meta(page, limit, total))


def bulk_result(result: Dict[str, Any]) -> JSONResponse:
    # same body whatever the outcome; the status tells all / some / none
    return ok(result, status_code=bulk_status_code(result))

# FILE: clinicdesk/api/response.py
from __future__ import annotations

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from clinicdesk.schemas.common import ApiFailure, ApiSuccess


def ok(
    data: Any = None,
    *,
    message: Optional[str] = None,
    status_code: int = 200,
) -> JSONResponse:
    """
    Standard success wrapper:
    {
      "success": true,
      "data": ...,
      "message": "..." (optional)
    }
    """
    body = ApiSuccess(data=jsonable_encoder(data), message=message)
    exclude = {"message"} if message is None else None
    return JSONResponse(status_code=status_code,
                        content=body.model_dump(exclude=exclude))


def err(
    message: str = "Something went wrong",
    *,
    status_code: int = 400,
    code: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    """
    Standard error wrapper:
    {
      "success": false,
      "message": "...",
      "code": "...",
      "details": ... (optional)
    }
    """
    body = ApiFailure(message=message,
                      code=code,
                      details=jsonable_encoder(details))
    exclude = {"details"} if details is None else None
    return JSONResponse(status_code=status_code,
                        content=body.model_dump(exclude=exclude))

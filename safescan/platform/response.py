from typing import Any, Dict, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def api_response(
    *,
    data: Optional[Any] = None,
    message: str = "Operation successful",
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    """
    Envelope shared by every endpoint: {status_code, status, message, data}.
    status is "success" below 400 and "error" from 400 up.
    """
    status_str = "success" if status_code < 400 else "error"
    data = jsonable_encoder(data) if data is not None else {}

    return JSONResponse(
        status_code=status_code,
        content={
            "status_code": status_code,
            "status": status_str,
            "message": message,
            "data": data,
        },
    )


def api_error_response(
    *,
    code: str,
    message: str,
    status_code: int,
    extra: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Error envelope carrying a stable machine-readable code under data.error."""
    data: Dict[str, Any] = {"error": {"code": code, "message": message}}
    if extra:
        data.update(extra)
    return api_response(data=data, message=message, status_code=status_code)

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def utc_timestamp() -> str:
    return f"{datetime.utcnow().isoformat()}Z"


def envelope(
    success: bool,
    message: str,
    data: Any = None,
    errors: Optional[List[Any]] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Body shared by every API response, successful or not."""
    body = {
        "success": success,
        "message": message,
        "data": data,
        "errors": errors if success else (errors or []),
        "timestamp": utc_timestamp(),
    }
    if meta is not None:
        body["meta"] = meta
    # SQLAlchemy rows, datetimes, Decimals and enums must all serialize.
    return jsonable_encoder(body)


def success(data: Optional[Any] = None, message: str = "Success", meta: Optional[Dict] = None):
    return envelope(True, message, data=data, meta=meta)


def error(message: str = "Error", errors: Optional[List[Any]] = None, status_code: int = 400) -> JSONResponse:
    """Failure envelope. Exception handlers in ``app.main`` go through here too."""
    return JSONResponse(status_code=status_code, content=envelope(False, message, errors=errors))


def paginated_response(items, total: int, page: int, limit: int):
    return success(
        data=items,
        meta={
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        },
    )

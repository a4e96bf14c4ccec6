"""
Shared request helpers for the API routers
"""
import json
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


async def read_json_body(request: Request) -> Optional[Any]:
    """Parsed JSON body, or None when the body is missing or not JSON"""
    try:
        raw = await request.body()
        if not raw:
            return None
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return None


def json_error(message: str, status_code: int, **extra: Any) -> JSONResponse:
    """{'success': False, 'error': message} with the given status"""
    content: Dict[str, Any] = {'success': False, 'error': message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)

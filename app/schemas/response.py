#app/schemas/response.py
from typing import Any, Optional

# Единый формат ответа: {success, data | error, message?, requiresHoursLog?}.
# Ошибки возвращаются с HTTP 200 и success=false.

def ok(data: Any = None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return body

def fail(error: str, **extra: Any) -> dict:
    """
    Тело ошибки; extra: дополнительные флаги (например requiresHoursLog=True).
    """
    return {"success": False, "error": error, **extra}

from typing import Any


def ok_response(**data: Any) -> dict:
    return {"ok": True, **data}


def error_response(message: str, **data: Any) -> dict:
    return {"error": message, **data}

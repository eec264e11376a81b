from typing import Any, Dict, Optional

READ_ROLES = ("viewer", "operator", "supervisor", "admin")
WRITE_ROLES = ("operator", "supervisor", "admin")
MANAGE_ROLES = ("supervisor", "admin")


def ok(data: Any = None, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return body

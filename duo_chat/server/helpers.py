from datetime import datetime, timezone
from typing import Any, Optional

from sanic import Request

from .errors import AuthError, ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    return header.removeprefix("Bearer ").strip() or None


def json_body(request: Request) -> dict[str, Any]:
    body = request.json
    return body if isinstance(body, dict) else {}


def require_fields(body: dict[str, Any], *names: str) -> list[Any]:
    values = [body.get(name) for name in names]
    if not all(values):
        raise ValidationError(f"{' and '.join(names).capitalize()} required")
    return values


def require_user(request: Request):
    user = request.app.ctx.sessions.resolve(bearer_token(request))
    if user is None:
        raise AuthError("Unauthorized")
    return user

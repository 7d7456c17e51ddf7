from uuid import uuid4

from sanic import Sanic, Request, Websocket
from sanic.response import HTTPResponse, json as json_response

from .errors import AuthError, ChatError
from .logger import logger
from .helpers import json_body, require_fields, require_user, utcnow


async def login(request: Request, app: Sanic) -> HTTPResponse:
    username, password = require_fields(json_body(request), "username", "password")

    if not app.ctx.credentials.verify(username, password):
        logger.warning(f"Failed login for {username!r}")
        raise AuthError("Invalid credentials")

    token = await app.ctx.sessions.issue_token(username)
    return json_response({"success": True, "token": token, "username": username})


async def logout(request: Request, app: Sanic) -> HTTPResponse:
    token = json_body(request).get("token")
    await app.ctx.broadcaster.logout(token if isinstance(token, str) else None)
    return json_response({"success": True})


async def get_messages(request: Request, app: Sanic) -> HTTPResponse:
    require_user(request)
    messages = await app.ctx.message_store.get_all()
    return json_response([m.to_dict() for m in messages])


async def clear_chat(request: Request, app: Sanic) -> HTTPResponse:
    user = require_user(request)
    await app.ctx.broadcaster.clear_chat()
    logger.info(f"Chat cleared by {user.username}")
    return json_response({"success": True})


async def chat_ws(request: Request, ws: Websocket, app: Sanic) -> None:
    connection_id = uuid4().hex
    broadcaster = app.ctx.broadcaster
    await broadcaster.connect(connection_id, ws)

    try:
        async for data in ws:
            if data is None:
                break
            await broadcaster.dispatch(connection_id, data)
    except Exception as e:
        logger.error(f"WebSocket error for {connection_id}: {e}")
    finally:
        await broadcaster.disconnect(connection_id)


async def health(request: Request, app: Sanic) -> HTTPResponse:
    degraded = app.ctx.registry.degraded or app.ctx.message_store.degraded
    return json_response(
        {
            "status": "ok",
            "messages": await app.ctx.message_store.count(),
            "online": len(app.ctx.presence.snapshot_online_users()),
            "persistence": "degraded" if degraded else "ok",
            "timestamp": utcnow().isoformat(),
        }
    )


def chat_error(request: Request, exception: ChatError) -> HTTPResponse:
    return json_response({"error": str(exception)}, status=exception.status_code)

from sanic import Sanic, Request, Websocket

from . import views
from .errors import ChatError


def register_routes(app: Sanic) -> None:
    @app.post("/login")
    async def login_route(request: Request):
        return await views.login(request, app)

    @app.post("/logout")
    async def logout_route(request: Request):
        return await views.logout(request, app)

    @app.get("/messages")
    async def messages_route(request: Request):
        return await views.get_messages(request, app)

    @app.post("/clear-chat")
    async def clear_chat_route(request: Request):
        return await views.clear_chat(request, app)

    @app.websocket("/ws/chat")
    async def chat_ws_route(request: Request, ws: Websocket):
        await views.chat_ws(request, ws, app)

    @app.get("/health")
    async def health_route(request: Request):
        return await views.health(request, app)

    app.error_handler.add(ChatError, views.chat_error)

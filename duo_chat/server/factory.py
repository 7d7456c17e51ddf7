from typing import Optional

from sanic import Sanic
from sanic_ext import Extend

from .broadcaster import Broadcaster
from .config import ServerConfig
from .credentials import CredentialStore
from .managers import ConnectionManager
from .presence import PresenceTracker
from .sessions import SessionManager
from .storage import JsonDocument
from .stores import MessageStore, UserRegistry
from .logger import logger

from .routes import register_routes


def create_app(config: Optional[ServerConfig] = None, name: str = "duo-chat-server") -> Sanic:
    config = config or ServerConfig()
    app = Sanic(name)
    Extend(app)

    registry = UserRegistry(JsonDocument(config.users_file, {}), config.users)
    registry.load()
    message_store = MessageStore(JsonDocument(config.messages_file, []))
    message_store.load()

    app.ctx.config = config
    app.ctx.registry = registry
    app.ctx.message_store = message_store
    app.ctx.credentials = CredentialStore(registry.as_mapping())
    app.ctx.sessions = SessionManager(registry)
    app.ctx.presence = PresenceTracker(registry)
    app.ctx.connection_manager = ConnectionManager()
    app.ctx.broadcaster = Broadcaster(
        registry,
        app.ctx.sessions,
        app.ctx.presence,
        message_store,
        app.ctx.connection_manager,
    )

    register_lifecycle(app)
    register_routes(app)

    return app


def register_lifecycle(app: Sanic) -> None:
    @app.before_server_start
    async def setup(app: Sanic):
        logger.info(f"Server starting, data in {app.ctx.config.data_dir}")

    @app.after_server_stop
    async def teardown(app: Sanic):
        logger.info("Server shutting down...")

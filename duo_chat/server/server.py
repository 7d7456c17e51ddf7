from typing import Optional

from .config import ServerConfig
from .factory import create_app
from .logger import logger


def run_server(
    host: Optional[str] = None,
    port: Optional[int] = None,
    data_dir: Optional[str] = None,
) -> None:
    overrides = {"host": host, "port": port and int(port), "data_dir": data_dir}
    config = ServerConfig(**{k: v for k, v in overrides.items() if v})

    app = create_app(config)
    logger.info(f"Visit http://localhost:{config.port} to access the chat")
    try:
        app.run(host=config.host, port=config.port, single_process=True, access_log=False)
    except KeyboardInterrupt:
        logger.info("Shutting down...")

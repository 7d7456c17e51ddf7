import os
from dataclasses import dataclass, field
from pathlib import Path


DEFAULT_USERS = {
    "Gauri": "18072007",
    "Btye": "18042004",
}


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = field(default_factory=lambda: int(os.environ.get("PORT", 3000)))
    data_dir: Path = field(
        default_factory=lambda: Path(os.environ.get("DUO_CHAT_DATA_DIR", "data"))
    )
    # username -> plaintext password, hashed when the registry is built
    users: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_USERS))

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)

    @property
    def users_file(self) -> Path:
        return self.data_dir / "users.json"

    @property
    def messages_file(self) -> Path:
        return self.data_dir / "messages.json"

import json
import os
from pathlib import Path
from typing import Any

from .errors import PersistenceError


class JsonDocument:
    """A single JSON document on disk, always read and rewritten whole."""

    def __init__(self, path: Path, default: Any):
        self.path = Path(path)
        self.default = default

    def load(self) -> Any:
        if not self.path.exists():
            return self.default
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read {self.path}: {e}") from e

    def save(self, data: Any) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp, self.path)
        except (OSError, TypeError) as e:
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e

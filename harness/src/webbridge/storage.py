"""Key/value storage for web-side session state (``localStorage`` analogue)."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional


class MemoryStorage:
    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


def _atomic_write_json(path: Path, payload: Dict[str, str]) -> None:
    path = path.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    content = json.dumps(payload, indent=2, sort_keys=True)

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


class JsonFileStorage:
    """Storage persisted to one JSON object on disk; every write rewrites the file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        try:
            data = json.loads(self.path.expanduser().read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, ValueError):
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(key): str(value) for key, value in data.items()}

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._load()
        items[key] = value
        _atomic_write_json(self.path, items)

    def remove_item(self, key: str) -> None:
        items = self._load()
        if items.pop(key, None) is not None:
            _atomic_write_json(self.path, items)


def load_json(storage, key: str) -> Any:
    raw = storage.get_item(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def save_json(storage, key: str, value: Any) -> None:
    storage.set_item(key, json.dumps(value, ensure_ascii=False))

"""Simple JSON-based config store."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from progress import DEFAULT_TERM, GOAL, MILESTONE_SIZE

CONFIG_DIR = Path.home() / ".config" / "jap_counter"

DEFAULTS: dict[str, Any] = {
    "api_key": "",
    "hotkey": "Key.f8",
    "recognizer": "google",
    "language": "hi-IN",
    "max_alternatives": 5,
    "server_url": "",
    "session_token": "",
    "db_path": str(CONFIG_DIR / "progress.db"),
    "user_id": "",
    "default_term": DEFAULT_TERM,
    "goal": GOAL,
    "milestone_size": MILESTONE_SIZE,
    "log_level": "INFO",
}


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or CONFIG_DIR / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        return str(self._get("api_key"))

    def set_api_key(self, key: str) -> None:
        self._set("api_key", key)

    def get_hotkey(self) -> str:
        return str(self._get("hotkey"))

    def set_hotkey(self, hotkey: str) -> None:
        self._set("hotkey", hotkey)

    def get_recognizer(self) -> str:
        return str(self._get("recognizer"))

    def get_language(self) -> str:
        return str(self._get("language"))

    def get_max_alternatives(self) -> int:
        return self._get_int("max_alternatives")

    def get_server_url(self) -> str:
        return str(self._get("server_url")).strip()

    def get_session_token(self) -> str:
        return str(self._get("session_token"))

    def set_session_token(self, token: str) -> None:
        self._set("session_token", token)

    def get_db_path(self) -> Path:
        return Path(str(self._get("db_path"))).expanduser()

    def get_user_id(self) -> str:
        return str(self._get("user_id"))

    def get_default_term(self) -> str:
        return str(self._get("default_term"))

    def get_goal(self) -> int:
        return self._get_int("goal")

    def get_milestone_size(self) -> int:
        return self._get_int("milestone_size")

    def get_log_level(self) -> str:
        return str(self._get("log_level")).upper()

    def _get(self, key: str) -> Any:
        return self._read_all().get(key, DEFAULTS[key])

    def _get_int(self, key: str) -> int:
        value = self._get(key)
        try:
            number = int(value)
        except (TypeError, ValueError):
            return int(DEFAULTS[key])
        return number if number > 0 else int(DEFAULTS[key])

    def _set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")

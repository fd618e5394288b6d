"""Runtime credential overrides persisted between runs."""

from __future__ import annotations

import json
import os
from pathlib import Path

from monke.core.config import Settings
from monke.core.logger import get_logger

logger = get_logger("server")


class CredentialStore:
    """JSON file mapping an AI service name to its API key."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load_all(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring unreadable credential file %s", self.path)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items() if isinstance(v, str) and v}

    def _save_all(self, items: dict[str, str]) -> None:
        """Save atomically to prevent partial writes. Not a full concurrency lock."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(items, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, service: str) -> str | None:
        return self._load_all().get(service)

    def set(self, service: str, key: str) -> None:
        items = self._load_all()
        if key:
            items[service] = key
        else:
            items.pop(service, None)
        self._save_all(items)

    def clear(self, service: str) -> bool:
        items = self._load_all()
        if service not in items:
            return False
        del items[service]
        self._save_all(items)
        return True


def env_var_name(service: str) -> str:
    return f"MONKE_{service.upper()}_API_KEY"


def resolve_api_key(settings: Settings, service: str, store: CredentialStore | None = None) -> str:
    """Return the key for ``service``: runtime override, then config, then environment.

    The environment is only consulted outside production.
    """
    store = store or CredentialStore(settings.credentials_path)
    key = store.get(service)
    if key:
        return key
    key = settings.api_keys.get(service)
    if key:
        return key
    if not settings.is_production:
        key = os.environ.get(env_var_name(service))
        if key:
            return key
    return ""

"""Application configuration defaults and the persisted settings file."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import List

from notefinder.embedding.assets import DEFAULT_MODEL
from notefinder.errors import ConfigError
from notefinder.models import COLLECTIONS, Collection

LOGGER = logging.getLogger(__name__)

CACHE_DIR_NAME = ".notefinder"
SETTINGS_FILE = "settings.json"
DATABASE_FILE = "embeddings.json"


def _get_default_vault_path() -> Path:
    """Vault defaults to the working directory, like running the CLI inside it."""
    return Path.cwd()


@dataclass(slots=True)
class AppConfig:
    vault_path: Path | None = None
    cache_dir: Path | None = None
    model_repo: str = DEFAULT_MODEL
    index_titles: bool = True
    index_headings: bool = True
    index_content: bool = False
    min_text_length: int = 50
    max_suggestions: int = 7
    auto_index: bool = True
    service_status: str = "not-configured"
    service_message: str = "Not configured"

    def __post_init__(self) -> None:
        if self.vault_path is None:
            self.vault_path = _get_default_vault_path()
        self.vault_path = Path(self.vault_path)
        if self.cache_dir is None:
            self.cache_dir = self.vault_path / CACHE_DIR_NAME
        self.cache_dir = Path(self.cache_dir)

    @property
    def db_path(self) -> Path:
        return self.cache_dir / DATABASE_FILE

    @property
    def settings_path(self) -> Path:
        return self.cache_dir / SETTINGS_FILE

    @property
    def model_dir(self) -> Path:
        return self.cache_dir / "models" / self.model_repo

    def is_enabled(self, collection: Collection) -> bool:
        return {
            Collection.TITLES: self.index_titles,
            Collection.HEADINGS: self.index_headings,
            Collection.CONTENT: self.index_content,
        }[collection]

    def enabled_collections(self) -> List[Collection]:
        return [collection for collection in COLLECTIONS if self.is_enabled(collection)]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["vault_path"] = str(self.vault_path)
        data["cache_dir"] = str(self.cache_dir)
        return data


def load_config(path: Path, *, vault_path: Path | None = None) -> AppConfig:
    """Load settings from ``path``; a missing file yields defaults."""
    path = Path(path)
    if not path.exists():
        return AppConfig(vault_path=vault_path)

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Unable to read settings {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Settings file {path} must contain a JSON object")

    known = {f.name for f in fields(AppConfig)}
    values = {key: value for key, value in raw.items() if key in known}
    if vault_path is not None:
        values["vault_path"] = vault_path
    return AppConfig(**values)


def save_config(config: AppConfig, path: Path | None = None) -> None:
    """Write settings atomically."""
    target = Path(path) if path is not None else config.settings_path
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_suffix(target.suffix + ".tmp")
    tmp.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
    os.replace(tmp, target)
    LOGGER.debug("Settings saved to %s", target)

"""Global configuration for eventboard."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "events_per_page": 20,
    "admin_events_per_page": 50,
    "session_ttl_hours": 24 * 14,
    "max_avatar_bytes": 2 * 1024 * 1024,
    "max_event_image_bytes": 5 * 1024 * 1024,
    "media_url_prefix": "/media",
    "seed_venues": 3,
    "seed_users": 10,
    "seed_events_per_venue": 4,
    "app_host": "0.0.0.0",
    "app_port": 8000,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "events_per_page": int,
    "admin_events_per_page": int,
    "session_ttl_hours": int,
    "max_avatar_bytes": int,
    "max_event_image_bytes": int,
    "media_url_prefix": str,
    "seed_venues": int,
    "seed_users": int,
    "seed_events_per_venue": int,
    "app_host": str,
    "app_port": int,
}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    uploads_dir: Path
    events_per_page: int
    admin_events_per_page: int
    session_ttl_hours: int
    max_avatar_bytes: int
    max_event_image_bytes: int
    media_url_prefix: str
    seed_venues: int
    seed_users: int
    seed_events_per_venue: int
    root_token_key: str
    app_host: str
    app_port: int
    config_path: Path

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(hours=self.session_ttl_hours)


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    return TYPE_CASTERS[key](value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"EVENTBOARD_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
    uploads_dir: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = (
        Path(database_path) if database_path else resolved_data / "eventboard.db"
    )
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    resolved_uploads = Path(uploads_dir) if uploads_dir else resolved_data / "uploads"
    if not resolved_uploads.is_absolute():
        resolved_uploads = resolved_base / resolved_uploads
    return resolved_base, resolved_data, resolved_db, resolved_uploads


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("EVENTBOARD_BASE_DIR", Path.cwd()))
    env_config = os.getenv("EVENTBOARD_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "eventboard.toml")
    toml_config = _load_toml_config(config_path)

    base_value, data_value, database_value, uploads_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("EVENTBOARD_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("EVENTBOARD_DB", toml_config.get("database_path")),
        uploads_dir=os.getenv("EVENTBOARD_UPLOADS_DIR", toml_config.get("uploads_dir")),
    )

    layered = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    settings = Settings(
        base_dir=base_value,
        data_dir=data_value,
        database_path=database_value,
        uploads_dir=uploads_value,
        root_token_key="root_admin_token",
        config_path=config_path,
        **layered,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.uploads_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
        "uploads_dir": str(settings.uploads_dir),
    }
    for key in DEFAULTS:
        payload[key] = getattr(settings, key)
    return payload


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# eventboard configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    merged = {**existing}
    for key, value in updates.items():
        if key not in DEFAULTS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()

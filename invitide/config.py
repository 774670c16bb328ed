"""Global configuration for Invitide."""

from __future__ import annotations

import os
import secrets
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "database_url": "",
    "session_secret": "",
    "session_ttl_hours": 24 * 14,
    "github_client_id": "",
    "github_client_secret": "",
    "pass_type_identifier": "pass.com.example.event",
    "pass_team_identifier": "",
    "pass_organization_name": "Invitide",
    "pass_certificate_path": "",
    "pass_key_path": "",
    "pass_wwdr_certificate_path": "",
    "signer_key_passphrase": "",
    "pass_assets_dir": "",
    "maintenance_interval_hours": 6,
    "sqlite_vacuum_hours": 12,
    "enable_scheduler": True,
    "seed_users": 8,
    "seed_events": 6,
    "app_host": "0.0.0.0",
    "app_port": 8000,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "database_url": str,
    "session_secret": str,
    "session_ttl_hours": int,
    "github_client_id": str,
    "github_client_secret": str,
    "pass_type_identifier": str,
    "pass_team_identifier": str,
    "pass_organization_name": str,
    "pass_certificate_path": str,
    "pass_key_path": str,
    "pass_wwdr_certificate_path": str,
    "signer_key_passphrase": str,
    "pass_assets_dir": str,
    "maintenance_interval_hours": int,
    "sqlite_vacuum_hours": int,
    "enable_scheduler": bool,
    "seed_users": int,
    "seed_events": int,
    "app_host": str,
    "app_port": int,
}

# Never written back to the TOML file by ``settings_as_dict``.
SECRET_KEYS = {"session_secret", "github_client_secret", "signer_key_passphrase"}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    database_url: str
    session_secret: str
    session_ttl_hours: int
    github_client_id: str
    github_client_secret: str
    pass_type_identifier: str
    pass_team_identifier: str
    pass_organization_name: str
    pass_certificate_path: str
    pass_key_path: str
    pass_wwdr_certificate_path: str
    signer_key_passphrase: str
    pass_assets_dir: Path
    maintenance_interval_hours: int
    sqlite_vacuum_hours: int
    enable_scheduler: bool
    seed_users: int
    seed_events: int
    app_host: str
    app_port: int
    config_path: Path

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(hours=self.session_ttl_hours)

    @property
    def github_oauth_enabled(self) -> bool:
        return bool(self.github_client_id and self.github_client_secret)


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"INVITIDE_{key.upper()}"
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
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = Path(database_path) if database_path else resolved_data / "invitide.db"
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def _resolve_session_secret(configured: str, data_dir: Path) -> str:
    """Return the configured cookie secret or a persisted generated one."""
    if configured:
        return configured
    key_path = data_dir / "session.key"
    if key_path.exists():
        stored = key_path.read_text(encoding="utf-8").strip()
        if stored:
            return stored
    generated = secrets.token_urlsafe(48)
    key_path.write_text(generated, encoding="utf-8")
    return generated


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("INVITIDE_BASE_DIR", Path.cwd()))
    env_config = os.getenv("INVITIDE_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "invitide.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("INVITIDE_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("INVITIDE_DB", toml_config.get("database_path")),
    )
    data_dir_value.mkdir(parents=True, exist_ok=True)

    def layered(key: str) -> Any:
        return _config_layered_value(key, toml_config=toml_config)

    database_url = layered("database_url") or f"sqlite:///{database_path_value}"
    assets_dir = layered("pass_assets_dir")
    pass_assets_dir = (
        Path(assets_dir) if assets_dir else Path(__file__).parent / "static" / "pass"
    )

    return Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        database_url=database_url,
        session_secret=_resolve_session_secret(
            layered("session_secret"), data_dir_value
        ),
        session_ttl_hours=layered("session_ttl_hours"),
        github_client_id=layered("github_client_id"),
        github_client_secret=layered("github_client_secret"),
        pass_type_identifier=layered("pass_type_identifier"),
        pass_team_identifier=layered("pass_team_identifier"),
        pass_organization_name=layered("pass_organization_name"),
        pass_certificate_path=layered("pass_certificate_path"),
        pass_key_path=layered("pass_key_path"),
        pass_wwdr_certificate_path=layered("pass_wwdr_certificate_path"),
        signer_key_passphrase=layered("signer_key_passphrase"),
        pass_assets_dir=pass_assets_dir,
        maintenance_interval_hours=layered("maintenance_interval_hours"),
        sqlite_vacuum_hours=layered("sqlite_vacuum_hours"),
        enable_scheduler=layered("enable_scheduler"),
        seed_users=layered("seed_users"),
        seed_events=layered("seed_events"),
        app_host=layered("app_host"),
        app_port=layered("app_port"),
        config_path=config_path,
    )


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    return {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
        "database_url": settings.database_url,
        "session_ttl_hours": settings.session_ttl_hours,
        "github_client_id": settings.github_client_id,
        "github_oauth_enabled": settings.github_oauth_enabled,
        "pass_type_identifier": settings.pass_type_identifier,
        "pass_team_identifier": settings.pass_team_identifier,
        "pass_organization_name": settings.pass_organization_name,
        "pass_certificate_path": settings.pass_certificate_path,
        "pass_key_path": settings.pass_key_path,
        "pass_wwdr_certificate_path": settings.pass_wwdr_certificate_path,
        "pass_assets_dir": str(settings.pass_assets_dir),
        "maintenance_interval_hours": settings.maintenance_interval_hours,
        "sqlite_vacuum_hours": settings.sqlite_vacuum_hours,
        "enable_scheduler": settings.enable_scheduler,
        "seed_users": settings.seed_users,
        "seed_events": settings.seed_events,
        "app_host": settings.app_host,
        "app_port": settings.app_port,
    }


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# Invitide configuration\n"]
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
        if key not in DEFAULTS or key in SECRET_KEYS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()

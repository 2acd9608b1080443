"""
Application settings.

Settings come from an optional YAML file (a local path or an http(s) URL named
by ``SALESBOARD_CONFIG``) with environment variables taking precedence over it.
An example file::

    database:
      backend: postgres
      host: db.internal
      port: 5432
      username: salesboard
      password: secret
      database: salesboard
    auth:
      secret_key: <fernet key>
      token_ttl_seconds: 3600
    storage:
      option: s3
      bucket: salesboard-backups
    client_name: Perfume Paradise
    log_level: INFO
"""
import logging
import os
from dataclasses import dataclass, field

import requests
import yaml
from cryptography.fernet import Fernet
from yaml import SafeLoader

from salesboard.constants import DEFAULT_CLIENT_NAME, TOKEN_TTL_SECONDS

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ("sqlite", "postgres")
DEFAULT_DB_PATH = "data/salesboard.db"
DEFAULT_SEED_PASSWORD = "password123"


class ConfigError(Exception):
    """Raised when the settings file or environment holds an invalid value."""


class SafeLineLoader(SafeLoader):
    def construct_mapping(self, node, deep=False):
        mapping = super(SafeLineLoader, self).construct_mapping(node, deep=deep)
        # Add 1 so line numbering starts at 1
        mapping['__line__'] = node.start_mark.line + 1
        return mapping


@dataclass
class Settings:
    db_backend: str = "sqlite"
    db_config: dict = field(default_factory=lambda: {"path": DEFAULT_DB_PATH})
    secret_key: str = None
    token_ttl_seconds: int = TOKEN_TTL_SECONDS
    storage_option: str = None
    storage_bucket: str = None
    client_name: str = DEFAULT_CLIENT_NAME
    log_level: str = "INFO"
    seed_password: str = DEFAULT_SEED_PASSWORD

    def __post_init__(self):
        if not self.secret_key:
            logger.warning("No SECRET_KEY is provided hence a random key is used; tokens will not survive a restart")
            self.secret_key = Fernet.generate_key().decode("utf-8")


def load_yaml_from_url(url: str) -> dict:
    """
    Downloads and parses a YAML settings file.

    Raises:
        ConfigError: If the file cannot be fetched or parsed.
    """
    try:
        response = requests.get(url, allow_redirects=True, timeout=30)
        response.raise_for_status()
    except requests.RequestException as e:
        logging.error(e, exc_info=True)
        raise ConfigError(f"Could not fetch settings from {url}: {e}")
    return _parse_yaml(response.content.decode("utf-8"), url)


def load_yaml_from_path(path: str) -> dict:
    try:
        with open(path, encoding="utf-8") as settings_file:
            return _parse_yaml(settings_file.read(), path)
    except OSError as e:
        raise ConfigError(f"Could not read settings file {path}: {e}")


def _parse_yaml(content: str, source: str) -> dict:
    try:
        loaded = yaml.load(content, SafeLineLoader)
    except yaml.YAMLError as e:
        logging.error(e, exc_info=True)
        raise ConfigError(f"Invalid YAML in settings file {source}: {e}")
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Settings file {source} must contain a mapping at the top level")
    return loaded


def load_yaml(location: str) -> dict:
    """Loads a settings file from a URL or a local path."""
    if location.startswith(("http://", "https://")):
        return load_yaml_from_url(location)
    return load_yaml_from_path(location)


def _section(cfg: dict, name: str) -> dict:
    section = cfg.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Section '{name}' must be a mapping, at line: {cfg.get('__line__')}")
    return {key: value for key, value in section.items() if key != '__line__'}


def _to_int(value, name: str, line=None) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        location = f", at line: {line}" if line else ""
        raise ConfigError(f"{name} must be an integer, got {value!r}{location}")


def _check_secret_key(key, line=None):
    if not key:
        return None
    try:
        Fernet(key)
    except (TypeError, ValueError) as e:
        location = f", at line: {line}" if line else ""
        raise ConfigError(f"secret_key is not a valid Fernet key: {e}{location}")
    return key


def load_settings(location: str = None, environ=None) -> Settings:
    """
    Builds the settings from the YAML file at ``location`` and the environment.

    Args:
        location (str, optional): Path or URL of a YAML settings file; defaults to ``SALESBOARD_CONFIG``.
        environ (dict, optional): The environment to read; defaults to ``os.environ``.

    Returns:
        Settings: The resolved settings.

    Raises:
        ConfigError: If a value is invalid.
    """
    environ = os.environ if environ is None else environ
    location = location or environ.get("SALESBOARD_CONFIG")
    cfg = load_yaml(location) if location else {}

    database = _section(cfg, "database")
    auth = _section(cfg, "auth")
    storage = _section(cfg, "storage")
    database_line = cfg["database"].get('__line__') if isinstance(cfg.get("database"), dict) else None
    auth_line = cfg["auth"].get('__line__') if isinstance(cfg.get("auth"), dict) else None

    backend = (environ.get("DB_BACKEND") or database.pop("backend", None) or "sqlite").lower()
    if backend not in SUPPORTED_BACKENDS:
        raise ConfigError(f"Unsupported database backend '{backend}', supported backends are "
                          f"{list(SUPPORTED_BACKENDS)}, at line: {database_line}")
    database.pop("backend", None)

    if backend == "sqlite":
        db_config = {"path": environ.get("DB_PATH") or database.get("path") or DEFAULT_DB_PATH}
    else:
        db_config = dict(database)
        if environ.get("DATABASE_URL"):
            db_config["dsn"] = environ["DATABASE_URL"]
        if "port" in db_config:
            db_config["port"] = _to_int(db_config["port"], "database.port", database_line)

    ttl = environ.get("TOKEN_TTL_SECONDS") or auth.get("token_ttl_seconds") or TOKEN_TTL_SECONDS

    settings = Settings(
        db_backend=backend,
        db_config=db_config,
        secret_key=_check_secret_key(environ.get("SECRET_KEY") or auth.get("secret_key"), auth_line),
        token_ttl_seconds=_to_int(ttl, "token_ttl_seconds"),
        storage_option=environ.get("OBJECT_STORAGE_OPTION") or storage.get("option"),
        storage_bucket=environ.get("OBJECT_STORAGE_BUCKET") or storage.get("bucket"),
        client_name=environ.get("CLIENT_NAME") or cfg.get("client_name") or DEFAULT_CLIENT_NAME,
        log_level=(environ.get("LOG_LEVEL") or cfg.get("log_level") or "INFO").upper(),
        seed_password=environ.get("SEED_PASSWORD") or auth.get("seed_password") or DEFAULT_SEED_PASSWORD,
    )
    logger.info(f"Loaded settings: backend={settings.db_backend}, storage={settings.storage_option or 'local'}")
    return settings

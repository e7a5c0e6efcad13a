"""
Configuration — environment defaults (from the environment / .env file) plus
the user settings file.

Settings are an explicit value: entry points call ``load_settings()`` once and
pass the result to the storage factory and the pipeline. Every user-editable
option is listed by hand in ``OPTIONS`` with its help text, getter and setter.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml
from dotenv import load_dotenv

from models.errors import ConfigError

load_dotenv()

log = logging.getLogger(__name__)

# User settings file
USER_CONFIG_FILENAME = ".feature-forge.yaml"

# Storage backends
STORAGE_GIT = "git"
STORAGE_MEMORY = "memory"
STORAGE_HTTP = "http"
STORAGE_TYPES = (STORAGE_GIT, STORAGE_MEMORY, STORAGE_HTTP)

# Defaults (overridable from the environment)
DEFAULT_BASE_IMAGE = os.getenv("FORGE_BASE_IMAGE", "ubuntu:latest")
DEFAULT_STORAGE = os.getenv("FORGE_STORAGE", STORAGE_GIT)
DEFAULT_GIT_URL = os.getenv("FORGE_GIT_URL", "")
DEFAULT_REGISTRY_URL = os.getenv("FORGE_REGISTRY_URL", "http://localhost:8080/api")
DEFAULT_DOCKER_BIN = os.getenv("FORGE_DOCKER_BIN", "docker")
DEFAULT_EXEC_TIMEOUT = float(os.getenv("FORGE_EXEC_TIMEOUT", "300"))
DEFAULT_RUNS_DIR = os.getenv("FORGE_RUNS_DIR", "")

# CLI defaults
DEFAULT_IMAGE_NAME = "forge-img"
DEFAULT_TEST_SPEC = "test_spec.json"

# Max characters of command output kept per test outcome
MAX_OUTPUT_CHARS = 5_000


@dataclass
class GitConfig:
    url: str = DEFAULT_GIT_URL
    ref: str = ""


@dataclass
class MemoryConfig:
    path: str = ""


@dataclass
class HttpConfig:
    url: str = DEFAULT_REGISTRY_URL
    timeout: float = 10.0


@dataclass
class DockerConfig:
    bin: str = DEFAULT_DOCKER_BIN


@dataclass
class Settings:
    base: str = DEFAULT_BASE_IMAGE
    storage: str = DEFAULT_STORAGE
    git: GitConfig = field(default_factory=GitConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    docker: DockerConfig = field(default_factory=DockerConfig)
    exec_timeout: float = DEFAULT_EXEC_TIMEOUT
    runs_dir: str = DEFAULT_RUNS_DIR

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """Build settings from a nested mapping, validating every key and value."""
        settings = cls()
        for key, value in _flatten(data).items():
            set_option(settings, key, "" if value is None else str(value))
        return settings


def _flatten(data: dict, prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in data.items():
        path = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, prefix=f"{path}."))
        else:
            flat[path] = value
    return flat


# ── Option table ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class ConfigOption:
    help: str
    get: Callable[[Settings], Any]
    set: Callable[[Settings, str], None]


def _positive_float(key: str, value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise ConfigError(f"'{key}' expects a number, got {value!r}") from None
    if number <= 0:
        raise ConfigError(f"'{key}' must be positive, got {value!r}")
    return number


def _set_storage(settings: Settings, value: str) -> None:
    if value not in STORAGE_TYPES:
        raise ConfigError(f"unknown storage type '{value}' (expected one of {', '.join(STORAGE_TYPES)})")
    settings.storage = value


def _set_exec_timeout(settings: Settings, value: str) -> None:
    settings.exec_timeout = _positive_float("exec_timeout", value)


def _set_http_timeout(settings: Settings, value: str) -> None:
    settings.http.timeout = _positive_float("http.timeout", value)


OPTIONS: dict[str, ConfigOption] = {
    "base": ConfigOption(
        "Base image name and tag (ex: 'ubuntu:22.04')",
        lambda s: s.base,
        lambda s, v: setattr(s, "base", v),
    ),
    "storage": ConfigOption(
        "Storage type ('git', 'memory' or 'http')",
        lambda s: s.storage,
        _set_storage,
    ),
    "git.url": ConfigOption(
        "Git repository URL holding the features/ directory",
        lambda s: s.git.url,
        lambda s, v: setattr(s.git, "url", v),
    ),
    "git.ref": ConfigOption(
        "Branch or tag to clone (empty for the default branch)",
        lambda s: s.git.ref,
        lambda s, v: setattr(s.git, "ref", v),
    ),
    "memory.path": ConfigOption(
        "YAML catalog file loaded by the memory storage",
        lambda s: s.memory.path,
        lambda s, v: setattr(s.memory, "path", v),
    ),
    "http.url": ConfigOption(
        "Base URL of the feature registry API",
        lambda s: s.http.url,
        lambda s, v: setattr(s.http, "url", v),
    ),
    "http.timeout": ConfigOption(
        "Registry request timeout in seconds",
        lambda s: s.http.timeout,
        _set_http_timeout,
    ),
    "docker.bin": ConfigOption(
        "Docker executable used to build images and run tests",
        lambda s: s.docker.bin,
        lambda s, v: setattr(s.docker, "bin", v),
    ),
    "exec_timeout": ConfigOption(
        "Per-test command timeout in seconds",
        lambda s: s.exec_timeout,
        _set_exec_timeout,
    ),
    "runs_dir": ConfigOption(
        "Directory for pipeline run logs (empty disables them)",
        lambda s: s.runs_dir,
        lambda s, v: setattr(s, "runs_dir", v),
    ),
}


def _option(key: str) -> ConfigOption:
    try:
        return OPTIONS[key]
    except KeyError:
        raise ConfigError(f"unknown configuration key '{key}'") from None


def option_help(key: str) -> str:
    return _option(key).help


def get_option(settings: Settings, key: str) -> str:
    value = _option(key).get(settings)
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def set_option(settings: Settings, key: str, value: str) -> None:
    _option(key).set(settings, value)


# ── User settings file ────────────────────────────────────────────────

def user_config_path() -> Path:
    override = os.getenv("FORGE_CONFIG")
    if override:
        return Path(override)
    return Path.home() / USER_CONFIG_FILENAME


def load_settings(path: Path | str | None = None) -> Settings:
    """
    Load settings from the user config file.

    A missing, unreadable or invalid file is logged and the defaults are used.
    """
    path = Path(path) if path else user_config_path()
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        log.info("Cannot open config-file [%s], Reason = [%s], SKIP", path, e)
        return Settings()
    except yaml.YAMLError as e:
        log.warning("Cannot load from [%s], Reason = [%s], SKIP", path, e)
        return Settings()

    if not isinstance(data, dict):
        log.warning("Cannot load from [%s], Reason = [not a mapping], SKIP", path)
        return Settings()
    try:
        return Settings.from_dict(data)
    except ConfigError as e:
        log.warning("Cannot load from [%s], Reason = [%s], SKIP", path, e)
        return Settings()


def save_settings(settings: Settings, path: Path | str | None = None) -> Path:
    path = Path(path) if path else user_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(settings.to_dict(), f, sort_keys=False)
    log.info("Settings saved: %s", path)
    return path

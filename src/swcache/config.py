"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for swcache:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.swcache/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir`, :func:`get_data_dir`.
* **Global config** -- A single :class:`~swcache.models.GlobalConfig`
  JSON file storing output defaults and the engine configuration.
* **Asset manifests** -- :func:`load_manifest` reads the build-time list of
  URLs to pre-cache.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables, project-local config, and global config into the
  effective :class:`~swcache.models.EngineConfig`.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from swcache.exceptions import ConfigError
from swcache.models import EngineConfig, GlobalConfig

_APP_NAME = "swcache"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "swcache.json"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/swcache/`` (default ``~/.config/swcache/``).
    On macOS/Windows: ``~/.swcache/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the cache directory, creating it if necessary.

    Holds the cache namespaces of the disk storage backend. Deleting it is
    equivalent to clearing every namespace.

    On Linux/BSD: ``$XDG_CACHE_HOME/swcache/`` (default ``~/.cache/swcache/``).
    On macOS/Windows: ``~/.swcache/cache/``.

    Returns:
        Absolute path to the cache directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CACHE_HOME", (".cache",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/swcache/`` (default ``~/.local/share/swcache/``).
    On macOS/Windows: ``~/.swcache/logs/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    On success the temp file is renamed over *path*; on any failure the temp
    file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~swcache.models.GlobalConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk.

    Args:
        config: The configuration to save.
    """
    data = config.model_dump(mode="json")
    _atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Asset manifest ---


def load_manifest(path: str | Path) -> list[str]:
    """Read an asset manifest file.

    The file is JSON: either a plain list of URLs, or an object with an
    ``"assets"`` list (the shape most build tools emit alongside other
    metadata).

    Args:
        path: Path to the manifest file.

    Returns:
        The manifest URLs in file order.

    Raises:
        ConfigError: If the file is missing, not valid JSON, or not a list of
            strings.
    """
    path = Path(path).expanduser()
    if not path.is_file():
        raise ConfigError(f"Asset manifest not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigError(f"Invalid asset manifest at {path}: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("assets")
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise ConfigError(
            f"Asset manifest at {path} must be a list of URLs or an object with an 'assets' list"
        )
    return data


# --- Project-local config ---


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local configuration from ``./swcache.json``.

    Project-local config sits between global config and environment variables
    in the precedence chain. Its keys are :class:`~swcache.models.EngineConfig`
    fields, typically ``version``, ``origin`` and ``precache``, so a site
    repository can pin how its cache is built.

    Returns:
        The parsed JSON as a dict, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but does not contain a JSON object.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid project config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Project config at {path} must be a JSON object")
    return data


# --- Precedence resolution ---


def resolve_config(
    cli_version: Optional[str] = None,
    cli_origin: Optional[str] = None,
    cli_manifest: Optional[str] = None,
) -> tuple[GlobalConfig, EngineConfig]:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_version``, ``cli_origin``, ``cli_manifest``)
        2. Environment variables (``SWCACHE_VERSION``, ``SWCACHE_ORIGIN``,
           ``SWCACHE_MANIFEST``)
        3. Project config (``./swcache.json``)
        4. User config (``~/.config/swcache/config.json``)
        5. Defaults

    Returns:
        A tuple of ``(global_config, engine_config)``.

    Raises:
        ConfigError: If any layer is unreadable or the merged engine config
            fails validation.
    """
    # 5 + 4. Load base global config (fills in defaults automatically)
    global_cfg = load_global_config()
    engine_data = global_cfg.engine.model_dump(mode="json")

    # 3. Layer in project-local config
    project = load_project_config()
    if project is not None:
        engine_data.update(project)

    # 2. Environment variables
    manifest_path: Optional[str] = None
    env_version = os.environ.get("SWCACHE_VERSION")
    if env_version:
        engine_data["version"] = env_version
    env_origin = os.environ.get("SWCACHE_ORIGIN")
    if env_origin:
        engine_data["origin"] = env_origin
    env_manifest = os.environ.get("SWCACHE_MANIFEST")
    if env_manifest:
        manifest_path = env_manifest

    # 1. CLI flags (highest precedence)
    if cli_version is not None:
        engine_data["version"] = cli_version
    if cli_origin is not None:
        engine_data["origin"] = cli_origin
    if cli_manifest is not None:
        manifest_path = cli_manifest

    if manifest_path is not None:
        engine_data["precache"] = load_manifest(manifest_path)

    try:
        engine_cfg = EngineConfig.model_validate(engine_data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid engine configuration: {exc}") from exc

    return global_cfg, engine_cfg

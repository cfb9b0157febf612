from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError


# ---------- Typed sections ----------

@dataclass
class ClusterSection:
    host: str = ""
    port: int = 443
    username: str = ""
    password: str = field(default="", repr=False)  # secret – never log in clear text
    verify_ssl: bool = True
    timeout_sec: float = 60.0
    scheme: str = "https"
    prefix: str = "mgmt"


@dataclass
class MonitorSection:
    poll_interval_sec: float = 5.0
    timeout_sec: float = 300.0


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    cluster: ClusterSection
    monitor: MonitorSection
    logging: LoggingSection


# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./nasadmin.yml",
    os.path.expanduser("~/.config/nasadmin/config.yml"),
    "/etc/nasadmin/config.yml",
)

_DEFAULTS: Dict[str, Any] = {
    "cluster": {
        "host": "",
        "port": 443,
        "username": "",
        "password": "",
        "verify_ssl": True,
        "timeout_sec": 60.0,
        "scheme": "https",
        "prefix": "mgmt",
    },
    "monitor": {"poll_interval_sec": 5.0, "timeout_sec": 300.0},
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
}

_BOOL_KEYS = {"verify_ssl"}
_INT_KEYS = {"port"}
_FLOAT_KEYS = {"timeout_sec", "poll_interval_sec"}


# ---------- Utilities ----------

def _merge_layers(*layers: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Fold configuration layers left to right into a new dict. Nested mappings
    merge key by key; any other value in a later layer replaces the earlier one.
    """
    out: Dict[str, Any] = {}
    for layer in layers:
        for key, value in (layer or {}).items():
            prev = out.get(key)
            if isinstance(value, dict) and isinstance(prev, dict):
                out[key] = _merge_layers(prev, value)
            elif isinstance(value, dict):
                out[key] = _merge_layers(value)
            else:
                out[key] = value
    return out


def _read_first_yaml(files: Tuple[str, ...]) -> Dict[str, Any]:
    """Parse the first existing file of *files*; an absent file set yields {}."""
    path = next((p for p in files if os.path.isfile(p)), None)
    if path is None:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _load_env_file() -> None:
    """Load a .env from the working directory tree, without overriding the real environment."""
    env_path = find_dotenv(usecwd=True)
    if env_path:
        load_dotenv(env_path, override=False)


def _env_to_dict(prefix: str = "NASADMIN_") -> Dict[str, Any]:
    """
    Convert NASADMIN_FOO__BAR=val to {"foo": {"bar": "val"}} (lowercased keys).
    """
    out: Dict[str, Any] = {}
    plen = len(prefix)
    for key, val in os.environ.items():
        if not key.startswith(prefix) or "__" not in key[plen:]:
            continue
        path = key[plen:].lower().split("__")
        cursor = out
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = val
    return out


_ENV_REF = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


def _interpolate_env(obj: Any) -> Any:
    """
    Expand ${VAR} and ${VAR:-default} references anywhere inside string values.
    An unset variable without a default expands to "".
    """
    if isinstance(obj, dict):
        return {k: _interpolate_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_env(x) for x in obj]
    if isinstance(obj, str) and "${" in obj:
        return _ENV_REF.sub(lambda m: os.environ.get(m.group("name"), m.group("default") or ""), obj)
    return obj


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Type coercion for booleans and numbers in known keys.
    """
    def to_bool(x: Any) -> bool:
        if isinstance(x, bool):
            return x
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def walk(obj: Any, key: str = "") -> Any:
        if isinstance(obj, dict):
            return {k: walk(v, k) for k, v in obj.items()}
        try:
            if key in _BOOL_KEYS:
                return to_bool(obj)
            if key in _INT_KEYS:
                return int(obj)
            if key in _FLOAT_KEYS:
                return float(obj)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid value for '{key}': {obj!r}") from exc
        return obj

    return walk(cfg)


def _validate(cfg: Dict[str, Any], require_host: bool) -> None:
    if require_host and not cfg.get("cluster", {}).get("host"):
        raise ConfigError(
            "Missing required configuration: cluster.host "
            "(set it in nasadmin.yml, NASADMIN_CLUSTER__HOST or --host)"
        )
    for section in ("cluster", "monitor", "logging"):
        if not isinstance(cfg.get(section), dict):
            raise ConfigError(f"Section '{section}' must be a mapping")


def _section(cls: type, data: Dict[str, Any]) -> Any:
    known = set(cls.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} keys: {', '.join(unknown)}")
    return cls(**data)


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "NASADMIN_",
    *,
    require_host: bool = True,
    use_dotenv: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides
      2) Environment variables (prefix NASADMIN_, nested via __), after .env loading
      3) YAML file (first existing)
      4) Built-in defaults

    Also performs ${ENV_VAR} interpolation, type coercion and validation.
    """
    if use_dotenv:
        _load_env_file()

    file_cfg = _read_first_yaml(files)
    env_cfg = _env_to_dict(env_prefix)

    merged = _merge_layers(_DEFAULTS, file_cfg, env_cfg, cli_overrides)

    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)

    _validate(merged, require_host)

    return AppConfig(
        cluster=_section(ClusterSection, merged.get("cluster", {})),
        monitor=_section(MonitorSection, merged.get("monitor", {})),
        logging=_section(LoggingSection, merged.get("logging", {})),
    )

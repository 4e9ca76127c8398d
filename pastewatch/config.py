from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .parsers import available_sites
from .writers.dump import BUCKETS

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yml"

DEFAULTS: Dict[str, Any] = {
    "logs_dir": "logs",
    "log_level": "INFO",
    "ignore_case": False,
    "sample_size": None,
    "max_pasties": 500,
    "rules_path": "rules/rules.yml",
    "proxies_path": None,
    "checkpoint_path": None,
    "fetch": {
        "timeout_seconds": 10,
        "rate_limit_pause_seconds": 5,
        "jitter_max_seconds": 5,
        "user_agents": None,
    },
    "sites": {"pastebin": {"enabled": True, "poll_interval_seconds": 60}},
    "dedup": {"threshold": None, "max_size": 20000, "max_samples": 200},
    "sinks": {
        "log": {"enabled": True},
        "cef": {"enabled": False, "port": 514, "severity": 3, "vendor": "pastewatch"},
        "mail": {"enabled": False, "port": 25, "starttls": False, "include_content": True},
        "dump": {"enabled": False, "compress": False, "bucket": "none"},
        "blog": {"enabled": False},
    },
}


class ConfigError(RuntimeError):
    """The configuration cannot be used to start the monitor."""


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: str | Path) -> Dict:
    config_path = Path(config_path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read config {config_path}: {exc}") from exc
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")
    config = _merge(DEFAULTS, data)
    config["config_dir"] = str(config_path.resolve().parent)
    return config


def resolve_path(config: Dict, value: str | Path | None) -> Path | None:
    """Relative paths in the config are relative to the config file."""
    if value in (None, ""):
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = Path(config.get("config_dir", ".")) / path
    return path


def enabled_sites(config: Dict) -> List[str]:
    return sorted(name for name, cfg in (config.get("sites") or {}).items() if (cfg or {}).get("enabled", True))


def _positive_number(value: Any, name: str, allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name} must be a number")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"{name} must be {'>= 0' if allow_zero else '> 0'}")


def _require(cfg: Dict, keys: List[str], section: str) -> None:
    missing = [key for key in keys if not cfg.get(key)]
    if missing:
        raise ConfigError(f"Incomplete {section} configuration: missing {', '.join(missing)}")


def validate_config(config: Dict) -> Dict:
    sample_size = config.get("sample_size")
    if sample_size is not None:
        if isinstance(sample_size, bool) or not isinstance(sample_size, int):
            raise ConfigError("Sample buffer length must be an integer")
        _positive_number(sample_size, "sample_size")
    max_pasties = config.get("max_pasties")
    if isinstance(max_pasties, bool) or not isinstance(max_pasties, int) or max_pasties < 1:
        raise ConfigError("max_pasties must be a positive integer")
    if not config.get("rules_path"):
        raise ConfigError("rules_path is required")

    fetch_cfg = config.get("fetch") or {}
    _positive_number(fetch_cfg.get("timeout_seconds"), "fetch.timeout_seconds")
    _positive_number(fetch_cfg.get("rate_limit_pause_seconds"), "fetch.rate_limit_pause_seconds", allow_zero=True)
    _positive_number(fetch_cfg.get("jitter_max_seconds"), "fetch.jitter_max_seconds", allow_zero=True)
    user_agents = fetch_cfg.get("user_agents")
    if user_agents is not None and (not isinstance(user_agents, list) or not user_agents):
        raise ConfigError("fetch.user_agents must be a non-empty list")

    sites = enabled_sites(config)
    if not sites:
        raise ConfigError("No site enabled")
    unknown = set(sites) - set(available_sites())
    if unknown:
        raise ConfigError(f"Unknown sites: {', '.join(sorted(unknown))}")
    for name in sites:
        interval = (config["sites"][name] or {}).get("poll_interval_seconds", 60)
        _positive_number(interval, f"sites.{name}.poll_interval_seconds")

    dedup_cfg = config.get("dedup") or {}
    threshold = dedup_cfg.get("threshold")
    if threshold is not None:
        _positive_number(threshold, "dedup.threshold")
        if threshold > 1:
            raise ConfigError("dedup.threshold must be within (0, 1]")
    _positive_number(dedup_cfg.get("max_size"), "dedup.max_size")
    _positive_number(dedup_cfg.get("max_samples"), "dedup.max_samples")

    sinks = config.get("sinks") or {}
    cef_cfg = sinks.get("cef") or {}
    if cef_cfg.get("enabled"):
        _require(cef_cfg, ["host"], "CEF")
        severity = cef_cfg.get("severity", 3)
        if not isinstance(severity, int) or not 0 <= severity <= 10:
            raise ConfigError("sinks.cef.severity must be an integer between 0 and 10")
    mail_cfg = sinks.get("mail") or {}
    if mail_cfg.get("enabled"):
        _require(mail_cfg, ["host", "sender", "recipients"], "mail")
    dump_cfg = sinks.get("dump") or {}
    if dump_cfg.get("enabled"):
        _require(dump_cfg, ["directory"], "dump")
        if (dump_cfg.get("bucket") or "none") not in BUCKETS:
            raise ConfigError(f"sinks.dump.bucket must be one of {', '.join(sorted(BUCKETS))}")
    blog_cfg = sinks.get("blog") or {}
    if blog_cfg.get("enabled"):
        _require(blog_cfg, ["site", "username", "password", "category"], "blog")
        if not sample_size:
            raise ConfigError("A sample buffer length must be given with blog output")
    return config


__all__ = [
    "ConfigError",
    "DEFAULTS",
    "DEFAULT_CONFIG_PATH",
    "enabled_sites",
    "load_config",
    "resolve_path",
    "validate_config",
]

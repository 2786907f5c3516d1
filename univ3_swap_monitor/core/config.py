"""
Runtime configuration for the swap monitor.

Values come from ``DEFAULT_CONFIG``, overlaid by a YAML file and then by
environment variables (a ``.env`` file is honoured by the CLI through
python-dotenv). ``load_config`` returns a plain, normalised dict.
"""

import os
from typing import Any, Dict, Mapping, Optional

import yaml
from web3 import Web3

from univ3_swap_monitor.core.errors import ConfigError

CONFIG_PATH_ENV = "SWAP_MONITOR_CONFIG_PATH"
DEFAULT_CONFIG_PATH = "parameters_yml/swap_monitor_config.yml"
INFURA_URL_TEMPLATE = "https://mainnet.infura.io/v3/{key}"

DEFAULT_CONFIG: Dict[str, Any] = {
    "json_rpc_urls": [],
    "infura_key": None,
    "pool_addr": None,
    "db_path": "data/swaps.db",
    "start_block": None,
    "poll_interval": 2.0,
    "max_window": 1000,
    "provider_max_window": None,
    "confirmations": 0,
    "retry_delay": 2.0,
    "rate_limit_delay": 5.0,
    "max_backoff": 60.0,
    "decode_workers": 1,
    "persist_cursor": True,
    "request_timeout": 60.0,
    "log_level": "INFO",
}

# env var -> config key
ENV_OVERRIDES = {
    "POOL_ADDRESS": "pool_addr",
    "DB_PATH": "db_path",
    "INFURA_KEY": "infura_key",
    "START_BLOCK": "start_block",
    "POLL_INTERVAL": "poll_interval",
    "MAX_WINDOW": "max_window",
    "CONFIRMATIONS": "confirmations",
    "LOG_LEVEL": "log_level",
}

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def resolve_config_path(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> str:
    environ = os.environ if environ is None else environ
    return path or environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Config field {name!r} must be an integer, got {value!r}") from exc


def _number(value: Any, name: str, cast=float):
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Config field {name!r} must be numeric, got {value!r}") from exc


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    path = resolve_config_path(path, environ)

    cfg = DEFAULT_CONFIG.copy()
    if not os.path.exists(path):
        print(f"Configuration file {path!r} not found. Using defaults.")
    else:
        try:
            with open(path, "r") as fh:
                loaded = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Cannot parse configuration file {path!r}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigError(f"Configuration file {path!r} must contain a YAML mapping.")
        cfg.update(loaded)

    for env_name, key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is not None and value.strip():
            cfg[key] = value.strip()
    if environ.get("RPC_URLS", "").strip():
        cfg["json_rpc_urls"] = environ["RPC_URLS"].split()

    # RPC endpoints
    urls = cfg.get("json_rpc_urls") or []
    if isinstance(urls, str):
        urls = urls.split()
    urls = [str(u).strip() for u in urls if str(u).strip()]
    if cfg.get("infura_key"):
        infura_url = INFURA_URL_TEMPLATE.format(key=str(cfg["infura_key"]).strip())
        if infura_url not in urls:
            urls.append(infura_url)
    if not urls:
        raise ConfigError("Config field 'json_rpc_urls' must be a non-empty list (or set INFURA_KEY).")
    cfg["json_rpc_urls"] = urls

    # Pool address
    pool = cfg.get("pool_addr")
    if not pool or not Web3.is_address(str(pool).strip()):
        raise ConfigError(f"Config field 'pool_addr' must be a valid contract address, got {pool!r}")
    cfg["pool_addr"] = Web3.to_checksum_address(str(pool).strip()).lower()

    try:
        cfg["db_path"] = str(cfg["db_path"]).format(pool=cfg["pool_addr"])
    except (KeyError, IndexError, ValueError) as exc:
        raise ConfigError(
            f"Config field 'db_path' may only use the {{pool}} placeholder, got {cfg['db_path']!r}"
        ) from exc

    cfg["start_block"] = _optional_int(cfg.get("start_block"), "start_block")
    if cfg["start_block"] is not None and cfg["start_block"] < 0:
        raise ConfigError("start_block must be >= 0")

    cfg["provider_max_window"] = _optional_int(cfg.get("provider_max_window"), "provider_max_window")
    cfg["max_window"] = _number(cfg["max_window"], "max_window", int)
    if cfg["max_window"] < 1:
        raise ConfigError("max_window must be >= 1")
    if cfg["provider_max_window"] is not None:
        if cfg["provider_max_window"] < 1:
            raise ConfigError("provider_max_window must be >= 1")
        cfg["max_window"] = min(cfg["max_window"], cfg["provider_max_window"])

    cfg["confirmations"] = _number(cfg["confirmations"], "confirmations", int)
    if cfg["confirmations"] < 0:
        raise ConfigError("confirmations must be >= 0")
    cfg["decode_workers"] = max(1, _number(cfg["decode_workers"], "decode_workers", int))

    for key in ("poll_interval", "retry_delay", "rate_limit_delay", "max_backoff", "request_timeout"):
        cfg[key] = _number(cfg[key], key, float)
        if cfg[key] < 0:
            raise ConfigError(f"{key} must be >= 0")
    if cfg["request_timeout"] <= 0:
        raise ConfigError("request_timeout must be > 0")

    cfg["persist_cursor"] = _as_bool(cfg["persist_cursor"])

    cfg["log_level"] = str(cfg["log_level"]).strip().upper()
    if cfg["log_level"] not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}")

    return cfg

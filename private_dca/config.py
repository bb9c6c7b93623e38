import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

CONFIG_DIR = Path.home() / ".private-dca"
BASE_CONFIG = CONFIG_DIR / "config.json"
LOCAL_CONFIG = CONFIG_DIR / "config.local.json"

DEFAULT_RPC_URL = "https://api.devnet.solana.com"
DEFAULT_JUPITER_API = "https://public.jupiterapi.com"

ENV_OVERRIDES = {
    "PRIVATE_DCA_WALLET": "wallet_path",
    "PRIVATE_DCA_RPC_URL": "rpc_url",
    "RANGE_API_KEY": "range_api_key",
    "PRIVATE_DCA_DATA_DIR": "data_dir",
    "PRIVATE_DCA_STRICT_PRIVACY": "strict_privacy",
    "PRIVATE_DCA_LOG_LEVEL": "log_level",
}


@dataclass
class DCAConfig:
    wallet_path: str = ""
    rpc_url: str = DEFAULT_RPC_URL
    network: str = "devnet"
    range_api_key: Optional[str] = None
    data_dir: str = str(CONFIG_DIR)
    strict_privacy: bool = False
    timezone: str = "UTC"
    fire_hour: int = 9
    jupiter_api_url: str = DEFAULT_JUPITER_API
    privacy_cash_url: Optional[str] = None
    shadowwire_url: Optional[str] = None
    arcium_mxe_public_key: Optional[str] = None
    log_level: str = "INFO"
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def data_path(self) -> Path:
        return resolve_path(self.data_dir)


def _load_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
        if isinstance(data, dict):
            return data
        return {}
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError:
        return {}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def infer_network(rpc_url: str) -> str:
    return "mainnet-beta" if "mainnet" in rpc_url else "devnet"


def load_raw_config(path: Optional[Path] = None) -> Dict[str, Any]:
    base_path = Path(path) if path else BASE_CONFIG
    base = _load_json(base_path)
    local = _load_json(base_path.with_name(base_path.stem + ".local.json"))
    if local:
        return _deep_merge(base, local)
    return base


def load_config(path: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> DCAConfig:
    raw = load_raw_config(path)
    env = os.environ if env is None else env
    for env_name, key in ENV_OVERRIDES.items():
        if env.get(env_name):
            raw[key] = env[env_name]

    known = {f.name for f in fields(DCAConfig)} - {"extra"}
    kwargs = {k: v for k, v in raw.items() if k in known}
    extra = {k: v for k, v in raw.items() if k not in known}

    if "strict_privacy" in kwargs:
        kwargs["strict_privacy"] = _parse_bool(kwargs["strict_privacy"])
    if "fire_hour" in kwargs:
        kwargs["fire_hour"] = int(kwargs["fire_hour"])

    config = DCAConfig(**kwargs, extra=extra)
    if "network" not in raw:
        config.network = infer_network(config.rpc_url)
    return config


def resolve_path(path_value: str) -> Path:
    return Path(path_value).expanduser().resolve()

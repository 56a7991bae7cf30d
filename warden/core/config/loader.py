from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError

from warden.core.config.models import WardenConfig
from warden.core.errors import ConfigError


# env var -> (section, field)
ENV_OVERRIDES: Dict[str, Tuple[str, str]] = {
    "OAUTH_CLIENT_ID": ("oauth", "client_id"),
    "OAUTH_CLIENT_SECRET": ("oauth", "client_secret"),
    "OAUTH_REDIRECT_URI": ("oauth", "redirect_uri"),
    "OAUTH_AUTHORIZATION_ENDPOINT": ("oauth", "authorization_endpoint"),
    "OAUTH_TOKEN_ENDPOINT": ("oauth", "token_endpoint"),
    "OAUTH_USERINFO_ENDPOINT": ("oauth", "userinfo_endpoint"),
    "WARDEN_MASTER_KEY": ("encryption", "master_key_hex"),
    "WARDEN_MASTER_KEY_PATH": ("encryption", "master_key_path"),
    "WARDEN_AUDIT_PATH": ("audit", "path_jsonl"),
    "WARDEN_MFA_WEBHOOK_URL": ("mfa", "webhook_url"),
    "WARDEN_MFA_WEBHOOK_TOKEN": ("mfa", "webhook_token"),
}


@dataclass(frozen=True)
class ReadResult:
    ok: bool
    data: Dict[str, Any]
    error: Optional[str] = None


def read_json_file(path: str) -> ReadResult:
    if not os.path.exists(path):
        return ReadResult(ok=False, data={}, error="missing")
    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
    except json.JSONDecodeError as e:
        return ReadResult(ok=False, data={}, error=f"corrupt_json:{e}")
    except OSError as e:
        return ReadResult(ok=False, data={}, error=str(e))
    if not isinstance(obj, dict):
        return ReadResult(ok=False, data={}, error="not_object")
    return ReadResult(ok=True, data=obj)


def apply_env_overrides(raw: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    out = {k: (dict(v) if isinstance(v, dict) else v) for k, v in raw.items()}
    for var, (section, field) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        sect = out.get(section)
        if not isinstance(sect, dict):
            sect = {}
        sect[field] = value
        out[section] = sect
    return out


def load_config(path: Optional[str] = None, *, env: Optional[Mapping[str, str]] = None) -> WardenConfig:
    """
    Load config from a JSON file (a missing file means defaults) and overlay
    environment variables. Corrupt or invalid config is fatal.
    """
    raw: Dict[str, Any] = {}
    if path:
        res = read_json_file(path)
        if not res.ok and res.error != "missing":
            raise ConfigError(f"Config file {os.path.basename(path)!r} is unreadable.", error=res.error)
        raw = res.data
    raw = apply_env_overrides(raw, os.environ if env is None else env)
    try:
        return WardenConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError("Config validation failed.", errors=[err.get("loc") for err in e.errors()]) from e

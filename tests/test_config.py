from __future__ import annotations

import json

import pytest

from warden.core.config import load_config
from warden.core.errors import ConfigError
from warden.core.mfa import LoggingDeliveryChannel, WebhookDeliveryChannel, build_delivery_channel


def test_missing_file_gives_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "nope.json"), env={})
    assert cfg.session.lifetime_seconds == 8 * 60 * 60
    assert cfg.mfa.max_attempts == 3
    assert cfg.mfa.challenge_ttl_seconds == 300
    assert cfg.biometric.similarity_threshold == 0.85
    assert cfg.audit.retention_days == 90
    assert cfg.compliance.frameworks == ["HIPAA", "SOC2", "CMMC"]


def test_env_overrides_file(tmp_path):
    path = tmp_path / "warden.json"
    path.write_text(json.dumps({"oauth": {"client_id": "from-file"}, "audit": {"retention_days": 30}}), encoding="utf-8")
    cfg = load_config(
        str(path),
        env={"OAUTH_CLIENT_ID": "from-env", "OAUTH_CLIENT_SECRET": "s3cret", "WARDEN_AUDIT_PATH": str(tmp_path / "a.jsonl")},
    )
    assert cfg.oauth.client_id == "from-env"
    assert cfg.oauth.client_secret.get_secret_value() == "s3cret"
    assert "s3cret" not in repr(cfg)
    assert cfg.audit.retention_days == 30
    assert cfg.audit.path_jsonl == str(tmp_path / "a.jsonl")


@pytest.mark.parametrize(
    "raw",
    [
        {"unknown_section": {}},
        {"compliance": {"frameworks": ["HIPAA", "MADE_UP"]}},
        {"web": {"allowed_origins": ["*"]}},
        {"mfa": {"max_attempts": 0}},
        {"mfa": {"delivery": "webhook"}},
        {"mfa": {"delivery": "webhook", "webhook_url": "http://sms.example.org/send"}},
        {"encryption": {"algorithm": "DES"}},
    ],
)
def test_invalid_config_raises_config_error(tmp_path, raw):
    path = tmp_path / "warden.json"
    path.write_text(json.dumps(raw), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(path), env={})


def test_unreadable_json_raises_config_error(tmp_path):
    path = tmp_path / "warden.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(path), env={})


def test_webhook_delivery_is_selected_from_env(tmp_path):
    path = tmp_path / "warden.json"
    path.write_text(json.dumps({"mfa": {"delivery": "webhook", "dispatch_timeout_seconds": 2.5}}), encoding="utf-8")
    cfg = load_config(
        str(path),
        env={"WARDEN_MFA_WEBHOOK_URL": "https://sms.example.org/send", "WARDEN_MFA_WEBHOOK_TOKEN": "hook-token"},
    )
    channel = build_delivery_channel(cfg.mfa)
    assert isinstance(channel, WebhookDeliveryChannel)
    assert channel.url == "https://sms.example.org/send"
    assert channel.timeout_seconds == 2.5
    assert channel.bearer_token == "hook-token"
    assert "hook-token" not in repr(cfg)


def test_log_delivery_is_the_default(tmp_path):
    cfg = load_config(str(tmp_path / "nope.json"), env={})
    assert isinstance(build_delivery_channel(cfg.mfa), LoggingDeliveryChannel)

"""Tests for bearer authentication and configuration loading."""

import pytest
from fastapi import HTTPException

from api.auth import DEV_USER_ID, get_user_id_from_auth, require_user
from utils.config import has_r2_credentials, load_config, validate_config


class TestGetUserIdFromAuth:
    def test_matching_token(self):
        assert get_user_id_from_auth("Bearer secret", "secret") == DEV_USER_ID

    def test_scheme_is_case_insensitive(self):
        assert get_user_id_from_auth("bearer   secret", "secret") == DEV_USER_ID

    @pytest.mark.parametrize("header", [None, "", "secret", "Basic secret", "Bearer wrong", "Bearer "])
    def test_rejected(self, header):
        assert get_user_id_from_auth(header, "secret") is None

    def test_empty_dev_token_never_matches(self):
        assert get_user_id_from_auth("Bearer x", "") is None


class TestRequireUser:
    @pytest.mark.asyncio
    async def test_accepts_dev_token(self, monkeypatch):
        monkeypatch.setenv("DEV_TOKEN", "tok")
        assert await require_user("Bearer tok") == DEV_USER_ID

    @pytest.mark.asyncio
    async def test_rejects_missing_header(self, monkeypatch):
        monkeypatch.setenv("DEV_TOKEN", "tok")
        with pytest.raises(HTTPException) as exc_info:
            await require_user(None)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Unauthorized"


class TestLoadConfig:
    """Tests for environment-driven configuration."""

    def test_defaults(self, monkeypatch):
        for name in ("RESULT_INLINE_MAX_BYTES", "RESULT_URL_EXPIRY_SECONDS", "IMAGE_BUCKET", "CORS_ORIGINS"):
            monkeypatch.delenv(name, raising=False)

        config = load_config()

        assert config["result_inline_max_bytes"] == 800_000
        assert config["result_url_expiry_seconds"] == 300
        assert config["image_bucket"] == "gen-images"
        assert config["cors_origins"] == ["*"]

    def test_google_api_key_fallback(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
        assert load_config()["gemini_api_key"] == "g-key"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")
        monkeypatch.setenv("PINATA_PREFER_IPFS", "false")
        monkeypatch.setenv("PINATA_GATEWAY_BASE", "https://gw.example/ipfs/")

        config = load_config()

        assert config["cors_origins"] == ["https://a.example", "https://b.example"]
        assert config["pinata_prefer_ipfs"] is False
        assert config["pinata_gateway_base"] == "https://gw.example/ipfs"

    def test_relative_db_path_is_resolved(self, monkeypatch):
        monkeypatch.setenv("TASK_DB_PATH", "data/tasks.db")
        assert load_config()["task_db_path"].endswith("data/tasks.db")
        assert load_config()["task_db_path"] != "data/tasks.db"


class TestValidateConfig:
    def test_missing_backends_warn(self, sample_config):
        sample_config["gemini_api_key"] = ""
        warnings = validate_config(sample_config)
        assert any("GEMINI_API_KEY" in w for w in warnings)
        assert any("No storage backend" in w for w in warnings)

    def test_configured(self, sample_config):
        sample_config["pinata_jwt"] = "jwt"
        assert validate_config(sample_config) == []

    def test_r2_credentials_must_be_complete(self, sample_config):
        assert has_r2_credentials(sample_config) is False
        sample_config.update(r2_account_id="a", r2_access_key_id="k", r2_secret_access_key="s")
        assert has_r2_credentials(sample_config) is True

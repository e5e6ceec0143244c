import os
import stat
from datetime import timedelta

import pytest
from pydantic import ValidationError

from tweetline.config import Settings, TokenStoreBackend, get_settings, reset_settings_cache
from tweetline.service.tokens import generate_private_key_pem
from tweetline.storage.models import TokenType


def test_defaults_match_token_lifetimes(settings):
    assert settings.token_ttl(TokenType.ACCESS_TOKEN) == timedelta(minutes=15)
    assert settings.token_ttl(TokenType.REFRESH_TOKEN) == timedelta(days=100)
    assert settings.token_ttl(TokenType.EMAIL_VERIFY_TOKEN) == timedelta(days=7)
    assert settings.token_ttl(TokenType.FORGOT_PASSWORD_TOKEN) == timedelta(minutes=60)


def test_generated_keys_are_persisted_and_reused(tmp_path):
    first = Settings(shared_fs_root=str(tmp_path))
    second = Settings(shared_fs_root=str(tmp_path))

    assert first.access_token_private_key == second.access_token_private_key
    key_file = tmp_path / "keys" / "access_token.pem"
    assert key_file.exists()
    assert stat.S_IMODE(key_file.stat().st_mode) == 0o600
    assert first.access_token_public_key.startswith("-----BEGIN PUBLIC KEY-----")


def test_escaped_pem_from_env_is_unescaped(tmp_path):
    pem = generate_private_key_pem()
    escaped = pem.strip().replace("\n", "\\n")

    settings = Settings(shared_fs_root=str(tmp_path), access_token_private_key=escaped)

    assert settings.access_token_private_key == pem.strip() + "\n"
    assert not (tmp_path / "keys" / "access_token.pem").exists()


def test_signing_key_carries_issuer_and_ttl(tmp_path):
    settings = Settings(
        shared_fs_root=str(tmp_path), jwt_issuer="tweetline-test", access_token_ttl_minutes=5
    )
    key = settings.signing_key(TokenType.ACCESS_TOKEN)

    assert key.issuer == "tweetline-test"
    assert key.ttl == timedelta(minutes=5)
    assert key.token_type == TokenType.ACCESS_TOKEN


def test_non_positive_ttl_rejected(tmp_path):
    with pytest.raises(ValidationError):
        Settings(shared_fs_root=str(tmp_path), refresh_token_ttl_minutes=0)


def test_from_env_reads_backend_and_origins(monkeypatch):
    monkeypatch.setenv("TOKEN_STORE", "redis")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")
    monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "30")

    settings = Settings.from_env()

    assert settings.token_store == TokenStoreBackend.REDIS
    assert settings.cors_allow_origins == ["https://a.example", "https://b.example"]
    assert settings.access_token_ttl_minutes == 30


def test_unknown_token_store_rejected(monkeypatch):
    monkeypatch.setenv("TOKEN_STORE", "sqlite")
    with pytest.raises(ValidationError):
        Settings.from_env()


def test_settings_cache_reset_rereads_environment(monkeypatch):
    reset_settings_cache()
    before = get_settings()
    monkeypatch.setenv("APP_BASE_URL", "https://tweetline.example")
    assert get_settings() is before

    reset_settings_cache()
    assert get_settings().app_base_url == "https://tweetline.example"
    monkeypatch.delenv("APP_BASE_URL")
    reset_settings_cache()


def test_key_directory_is_private(tmp_path):
    Settings(shared_fs_root=str(tmp_path))
    mode = stat.S_IMODE(os.stat(tmp_path / "keys").st_mode)
    assert mode == 0o700

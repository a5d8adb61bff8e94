"""
Unit tests for application settings.
"""

import pytest

from cloudfiles.config.settings import Settings
from cloudfiles.infrastructure.cloud import StorageConfig


def _settings(**overrides) -> Settings:
    # _env_file=None keeps a developer's .env out of the tests
    return Settings(_env_file=None, **overrides)


class TestListSettings:

    def test_api_keys_are_split_and_trimmed(self):
        settings = _settings(api_keys=" key-1 , key-2,,")

        assert settings.api_keys_list == ["key-1", "key-2"]

    def test_cors_wildcard(self):
        assert _settings(cors_origins="*").cors_origins_list == ["*"]

    def test_encoding_extensions(self):
        settings = _settings(encoding_extensions="iphone:m4v, thumbnail:.png,broken,:x")

        assert settings.encoding_extensions_map == {"iphone": "m4v", "thumbnail": "png"}

    def test_no_encoding_extensions(self):
        assert _settings().encoding_extensions_map == {}


class TestValidateRequiredFields:

    def test_storage_keys_are_always_required(self):
        missing = _settings(snowflake_mock_mode=True).validate_required_fields()

        assert missing == ["STORAGE_ACCESS_KEY", "STORAGE_SECRET_KEY"]

    def test_snowflake_credentials_required_outside_mock_mode(self):
        missing = _settings(
            storage_access_key="a",
            storage_secret_key="s",
        ).validate_required_fields()

        assert "SNOWFLAKE_ACCOUNT" in missing
        assert "SNOWFLAKE_USER" in missing
        assert "SNOWFLAKE_PASSWORD or SNOWFLAKE_PRIVATE_KEY_PATH" in missing

    def test_private_key_replaces_password(self):
        missing = _settings(
            storage_access_key="a",
            storage_secret_key="s",
            snowflake_account="acct",
            snowflake_user="svc",
            snowflake_private_key_base64="LS0tLS1CRUdJTi0tLS0t",
        ).validate_required_fields()

        assert missing == []


class TestStorageConfigFromSettings:

    def test_values_are_carried_over(self):
        config = StorageConfig.from_settings(_settings(
            storage_access_key="a",
            storage_secret_key="s",
            storage_asset_domain="cdn.example.org",
            storage_use_ssl=True,
            storage_timeout_seconds=5,
            storage_tmp_dir="",
        ))

        assert config.access_key == "a"
        assert config.asset_domain == "cdn.example.org"
        assert config.master_domain == "master.urbanclouds.com"
        assert config.scheme == "https"
        assert config.timeout_seconds == 5
        assert config.tmp_dir is None

    def test_missing_keys_fail_fast(self):
        with pytest.raises(ValueError):
            StorageConfig.from_settings(_settings())

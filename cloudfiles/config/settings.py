"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Mock modes enable local development without the storage cloud or Snowflake.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like api_keys), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "Cloudfiles API"
    api_version: str = "v1"
    api_keys: str = Field(
        default="dev-key-1,dev-key-2",
        description="Comma-separated API keys. Using a list enables key rotation without downtime."
    )

    # Storage cloud
    storage_access_key: str = Field(
        default="",
        description="Access key shared with the storage cloud. Sent in clear with every request."
    )
    storage_secret_key: str = Field(
        default="",
        description="Secret key used to sign requests. Never sent over the wire."
    )
    storage_asset_domain: str = Field(
        default="urbanclouds.com",
        description="Domain of the storage nodes; node 'a0' is reached at a0.<asset_domain>"
    )
    storage_master_domain: str = Field(
        default="master.urbanclouds.com",
        description="Host of the master that accepts new files"
    )
    storage_use_ssl: bool = Field(
        default=False,
        description="Use https for master and node requests"
    )
    storage_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single HTTP request to the master or a node"
    )
    storage_tmp_dir: Optional[str] = Field(
        default=None,
        description="Directory for temporary copies of files. System default if unset."
    )
    storage_mock_mode: bool = Field(
        default=False,
        description="Use an in-memory storage cloud instead of the real master and nodes."
    )
    encoding_extensions: str = Field(
        default="",
        description="Comma-separated format:extension overrides, e.g. 'iphone:m4v,thumbnail:png'"
    )

    # Snowflake Configuration
    snowflake_account: str = Field(
        default="",
        description="Snowflake account identifier"
    )
    snowflake_user: str = Field(
        default="",
        description="Snowflake service account username"
    )
    snowflake_password: str = Field(
        default="",
        description="Snowflake service account password"
    )
    snowflake_private_key_path: Optional[str] = Field(
        default=None,
        description="Path to RSA private key file for key-pair authentication"
    )
    snowflake_private_key_base64: Optional[str] = Field(
        default=None,
        description="Base64-encoded private key (for deployment, alternative to file path)"
    )
    snowflake_database: str = Field(
        default="CLOUDFILES",
        description="Snowflake database name"
    )
    snowflake_schema: str = Field(
        default="STORAGE",
        description="Snowflake schema name"
    )
    snowflake_warehouse: str = Field(
        default="COMPUTE_WH",
        description="Snowflake warehouse for query execution"
    )
    snowflake_role: Optional[str] = Field(
        default=None,
        description="Snowflake role to use (optional)"
    )
    snowflake_mock_mode: bool = Field(
        default=False,
        description="Keep file mappings in memory instead of Snowflake. Enables local dev without DB."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys into a list."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def encoding_extensions_map(self) -> dict[str, str]:
        """Parse 'format:ext' pairs; malformed entries are ignored."""
        extensions = {}
        for pair in self.encoding_extensions.split(","):
            format_name, sep, extension = pair.partition(":")
            if sep and format_name.strip() and extension.strip():
                extensions[format_name.strip()] = extension.strip().lstrip(".")
        return extensions

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        # Keys are needed even in mock mode: the in-memory cloud signs too
        if not self.storage_access_key:
            missing.append("STORAGE_ACCESS_KEY")
        if not self.storage_secret_key:
            missing.append("STORAGE_SECRET_KEY")

        if not self.snowflake_mock_mode:
            if not self.snowflake_account:
                missing.append("SNOWFLAKE_ACCOUNT")
            if not self.snowflake_user:
                missing.append("SNOWFLAKE_USER")
            if not (
                self.snowflake_password
                or self.snowflake_private_key_path
                or self.snowflake_private_key_base64
            ):
                missing.append("SNOWFLAKE_PASSWORD or SNOWFLAKE_PRIVATE_KEY_PATH")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once per process. For tests, call
    get_settings.cache_clear() to reset.
    """
    return Settings()

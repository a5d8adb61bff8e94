"""
Snowflake database connection management.

Provides the connection factory and context manager used by the mapping
repository. Mock mode skips Snowflake entirely and keeps mappings in
memory (see repositories.mappings.InMemoryMappingRepository).
"""

import base64
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, Optional, Protocol

logger = logging.getLogger(__name__)


class SnowflakeConnectionError(Exception):
    """Raised when Snowflake connection fails."""
    pass


class SnowflakeConnection(Protocol):
    """
    Protocol for Snowflake connections.

    Using a protocol means tests can provide a fake without
    importing the actual snowflake-connector-python.
    """

    def cursor(self): ...
    def commit(self) -> None: ...
    def close(self) -> None: ...


@dataclass
class SnowflakeConfig:
    """Configuration for Snowflake connection."""
    account: str
    user: str
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    private_key_base64: Optional[str] = None
    database: str = "CLOUDFILES"
    schema: str = "STORAGE"
    warehouse: str = "COMPUTE_WH"
    role: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "SnowflakeConfig":
        return cls(
            account=settings.snowflake_account,
            user=settings.snowflake_user,
            password=settings.snowflake_password or None,
            private_key_path=settings.snowflake_private_key_path,
            private_key_base64=settings.snowflake_private_key_base64,
            database=settings.snowflake_database,
            schema=settings.snowflake_schema,
            warehouse=settings.snowflake_warehouse,
            role=settings.snowflake_role,
        )


def _load_private_key(pem_data: bytes) -> bytes:
    """
    Convert a PEM private key for key-pair authentication.

    Snowflake requires the private key as DER bytes, not a file path.
    """
    from cryptography.hazmat.primitives import serialization

    private_key = serialization.load_pem_private_key(pem_data, password=None)

    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )


def _connect_params(config: SnowflakeConfig) -> dict:
    params = {
        'account': config.account,
        'user': config.user,
        'database': config.database,
        'schema': config.schema,
        'warehouse': config.warehouse,
        'role': config.role,
        'client_session_keep_alive': True,
    }

    # Key-pair auth wins over password auth
    if config.private_key_base64:
        logger.info("Using key-pair authentication for Snowflake (inline key)")
        params['private_key'] = _load_private_key(base64.b64decode(config.private_key_base64))
    elif config.private_key_path:
        logger.info("Using key-pair authentication for Snowflake")
        with open(config.private_key_path, 'rb') as key_file:
            params['private_key'] = _load_private_key(key_file.read())
    elif config.password:
        logger.info("Using password authentication for Snowflake")
        params['password'] = config.password
    else:
        raise SnowflakeConnectionError(
            "Either password or a private key must be provided"
        )

    return params


@contextmanager
def create_snowflake_connection(config: SnowflakeConfig) -> Generator[SnowflakeConnection, None, None]:
    """
    Provide a Snowflake connection with automatic cleanup.

    Usage:
        with create_snowflake_connection(config) as conn:
            repo = SnowflakeMappingRepository(conn)
            repo.find_mapping("photo", 42)
    """
    import snowflake.connector

    conn = None
    try:
        conn = snowflake.connector.connect(**_connect_params(config))

        logger.debug(
            "Established Snowflake connection",
            extra={
                "account": config.account,
                "database": config.database,
                "schema": config.schema,
            }
        )

    except snowflake.connector.errors.DatabaseError as e:
        logger.error(
            "Snowflake connection failed",
            extra={"error": str(e), "account": config.account}
        )
        raise SnowflakeConnectionError(f"Database connection failed: {e}") from e

    try:
        yield conn
    finally:
        try:
            conn.close()
            logger.debug("Closed Snowflake connection")
        except Exception as e:
            logger.warning(
                "Error closing Snowflake connection",
                extra={"error": str(e)}
            )

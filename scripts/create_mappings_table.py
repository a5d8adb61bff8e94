#!/usr/bin/env python3
"""
Create the file_mappings table and its id sequence in Snowflake.

Usage:
    python scripts/create_mappings_table.py
    python scripts/create_mappings_table.py --dry-run

Requires:
    - .env file with Snowflake credentials
"""

import sys
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from cloudfiles.config.settings import get_settings  # noqa: E402
from cloudfiles.infrastructure.snowflake.client import (  # noqa: E402
    SnowflakeConfig,
    SnowflakeConnectionError,
    create_snowflake_connection,
)
from cloudfiles.infrastructure.snowflake.repositories.mappings import (  # noqa: E402
    CREATE_SEQUENCE_SQL,
    CREATE_TABLE_SQL,
    SnowflakeMappingRepository,
)


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Create the file_mappings table in Snowflake')
    parser.add_argument('--dry-run', action='store_true', help='Print the statements only')
    args = parser.parse_args()

    if args.dry_run:
        print("\n=== DRY RUN - Nothing will be created ===\n")
        print(CREATE_SEQUENCE_SQL + ";")
        print(CREATE_TABLE_SQL.strip() + ";")
        return

    settings = get_settings()
    config = SnowflakeConfig.from_settings(settings)

    print(f"Connecting to Snowflake account: {config.account}")
    print(f"Using database {config.database}, schema {config.schema}")

    try:
        with create_snowflake_connection(config) as conn:
            SnowflakeMappingRepository(conn).ensure_schema()
    except SnowflakeConnectionError as e:
        print(f"ERROR connecting to Snowflake: {e}")
        sys.exit(1)

    print("[OK] file_mappings is ready")


if __name__ == '__main__':
    main()

#!/usr/bin/env python3
"""
Print the status of storage nodes, and optionally a file's meta information.

Usage:
    python scripts/node_status.py a0 a1
    python scripts/node_status.py a0 --path files/12/cat.png

Requires:
    - .env file with STORAGE_ACCESS_KEY and STORAGE_SECRET_KEY
"""

import sys
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from cloudfiles.config.settings import get_settings  # noqa: E402
from cloudfiles.core.storage.errors import CloudStorageError  # noqa: E402
from cloudfiles.infrastructure.cloud import StorageConfig, create_connection  # noqa: E402


def print_node(connection, node: str, path: str | None) -> bool:
    """Print status (and meta for ``path``) of one node. Returns False on failure."""
    try:
        status = connection.status(node)
    except CloudStorageError as e:
        print(f"[ERR] {node}: {e}")
        return False

    print(f"[OK] {node} ({connection.base_url(node)})")
    print(f"  space overall: {status.get('space_overall')} GB")
    print(f"  space free:    {status.get('space_free')} GB")
    print(f"  load average:  {status.get('load_avg')}")

    if path:
        try:
            meta = connection.meta(node, path)
        except CloudStorageError as e:
            print(f"  [ERR] meta for {path}: {e}")
            return False

        print(f"  {path}:")
        print(f"    access level: {meta.get('access_level')}")
        print(f"    content type: {meta.get('content_type')}")
        print(f"    size:         {meta.get('file_size')} bytes")

    return True


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Show status of storage nodes')
    parser.add_argument('nodes', nargs='+', help='Node names, e.g. a0 a1')
    parser.add_argument('--path', default=None, help='Also show meta information of this file')
    parser.add_argument('--mock', action='store_true', help='Query the in-memory cloud instead')
    args = parser.parse_args()

    settings = get_settings()
    missing = [
        name for name, value in (
            ("STORAGE_ACCESS_KEY", settings.storage_access_key),
            ("STORAGE_SECRET_KEY", settings.storage_secret_key),
        ) if not value
    ]
    if missing:
        print(f"ERROR: Missing {', '.join(missing)}")
        sys.exit(1)

    config = StorageConfig.from_settings(settings)

    with create_connection(config, mock_mode=args.mock or settings.storage_mock_mode) as connection:
        results = [print_node(connection, node, args.path) for node in args.nodes]

    failed = results.count(False)
    print(f"\nNodes checked: {len(results)}, failed: {failed}")
    sys.exit(1 if failed else 0)


if __name__ == '__main__':
    main()

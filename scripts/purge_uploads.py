#!/usr/bin/env python3
"""
Delete stored files by reference.

Used for one-off content cleanups: after records are removed directly in
the database, their files are left behind. Feed the orphaned references
to this script and it deletes each through the configured storage backend,
best-effort, exactly as the API does when a record is deleted.

Usage:
    python scripts/purge_uploads.py gallery/abc/1700000000000-42.jpg
    python scripts/purge_uploads.py --file orphans.txt --dry-run

Requires:
    - .env file with storage settings (or local mode, the default)
"""

import asyncio
import sys
from pathlib import Path

# Add src to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def read_references(references: list[str], filepath: str | None = None) -> list[str]:
    """
    Collect references from arguments and an optional file.

    The file holds one reference per line; blank lines and lines starting
    with '#' are skipped. Duplicates are dropped, order is kept.
    """
    collected = list(references)

    if filepath:
        with open(filepath, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#'):
                    collected.append(line)

    return list(dict.fromkeys(collected))


async def purge(references: list[str], storage, dry_run: bool = False) -> int:
    """Delete every reference. Returns how many were processed."""
    for reference in references:
        if dry_run:
            print(f"[DRY RUN] Would delete {reference}")
            continue
        await storage.delete(reference)
        print(f"[OK] {reference}")
    return len(references)


def main():
    import argparse

    from src.config.settings import get_settings
    from src.infrastructure.storage.client import create_storage_client

    parser = argparse.ArgumentParser(description='Delete stored files by reference')
    parser.add_argument('references', nargs='*', help='References to delete')
    parser.add_argument('--file', help='File with one reference per line')
    parser.add_argument('--dry-run', action='store_true', help='List only, don\'t delete')
    args = parser.parse_args()

    if args.file and not Path(args.file).exists():
        print(f"ERROR: Cannot find {args.file}")
        sys.exit(1)

    references = read_references(args.references, args.file)
    if not references:
        print("ERROR: No references given")
        sys.exit(1)

    settings = get_settings()
    storage = create_storage_client(settings.storage_config())
    print(f"Storage mode: {storage.mode.value}")

    count = asyncio.run(purge(references, storage, dry_run=args.dry_run))

    print(f"\n=== Purge Complete ===")
    print(f"Processed: {count}")


if __name__ == '__main__':
    main()

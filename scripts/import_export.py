#!/usr/bin/env python3
"""
Import a ChatGPT conversation export into the local store.
Accepts the conversations.json file itself or the unzipped export directory.
"""

import sys
import time
import argparse
import logging
from pathlib import Path

# Add chatvault to path
sys.path.insert(0, str(Path(__file__).parent.parent))
from chatvault import config
from chatvault.errors import ChatVaultError
from chatvault.ingest_chatgpt import ingest_export


def main():
    parser = argparse.ArgumentParser(description="Import a ChatGPT export (replaces the current store contents)")
    parser.add_argument("path", help="conversations.json or an export directory containing it")
    parser.add_argument("--db", default=str(config.DB_PATH), help=f"SQLite store (default: {config.DB_PATH})")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO),
                        format="%(asctime)s %(levelname)s %(message)s")

    print("📥 ChatVault import")
    print("=" * 50)
    print(f"   Source: {args.path}")
    print(f"   Store:  {args.db}")

    start_time = time.time()
    try:
        result = ingest_export(args.path, args.db)
    except FileNotFoundError as e:
        print(f"\n❌ {e}")
        sys.exit(2)
    except ChatVaultError as e:
        print(f"\n❌ Import failed: {e}")
        sys.exit(1)

    duration = time.time() - start_time
    print(f"\n✅ Imported in {duration:.1f} seconds")
    print(f"   💬 Conversations: {result.conversations_imported:,} ({result.conversations_skipped:,} skipped)")
    print(f"   📁 Folders: {result.folders_imported:,} ({result.folders_skipped:,} skipped)")
    print(f"   🔍 Messages indexed: {result.messages_indexed:,}")
    if result.ambiguous_roots:
        print(f"   ⚠️  Conversations without a single root: {result.ambiguous_roots:,}")


if __name__ == "__main__":
    main()

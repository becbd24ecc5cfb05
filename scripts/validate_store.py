#!/usr/bin/env python3
"""
Consistency report for the local conversation store.
Exits non-zero when any check finds a problem.
"""

import sys
import sqlite3
import argparse
from pathlib import Path

# Add chatvault to path
sys.path.insert(0, str(Path(__file__).parent.parent))
from chatvault import config
from chatvault.db import DB, Database


class StoreValidator:
    def __init__(self, db_path):
        self.db_path = str(db_path)
        self.findings = {}

        print("🔍 ChatVault Store Validator")
        print("=" * 50)
        print(f"   Store: {self.db_path}")

    def check_migrations(self):
        """Report columns an older store is missing. Reads the file before anything migrates it."""
        print("\n🏗️  Checking schema version...")
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            pending = Database(conn).pending_migrations()
        finally:
            conn.close()
        if pending:
            print(f"   ❌ Missing columns (added by this run): {', '.join(pending)}")
        else:
            print("   ✅ Schema is current")
        return pending

    def check_consistency(self):
        with DB(self.db_path) as db:
            counts = db.table_counts()
            print("\n📊 Table counts:")
            for table, n in counts.items():
                print(f"   {table}: {n:,}")

            print("\n🏷️  Checking tags...")
            orphaned = db.orphaned_tags()
            self._report(orphaned, "tag rows reference missing conversations",
                         lambda r: f"{r[0]}: {r[1]!r}")

            print("\n🔎 Checking search index...")
            stale = db.stale_fts_conversations()
            self._report(stale, "indexed conversations no longer exist", str)

            print("\n📁 Checking folders...")
            unresolved = db.unresolved_folder_refs()
            self._report(unresolved, "conversations name an unknown folder (shown as ungrouped)",
                         lambda r: f"{r[0]} -> {r[1]}")
        return orphaned, stale, unresolved

    def _report(self, rows, label, fmt):
        if not rows:
            print("   ✅ OK")
            return
        print(f"   ❌ {len(rows):,} {label}")
        for row in rows[:10]:
            print(f"      {fmt(row)}")
        if len(rows) > 10:
            print(f"      ... and {len(rows) - 10:,} more")

    def run_validation(self):
        if not Path(self.db_path).exists():
            print(f"\n❌ Store not found: {self.db_path}")
            return False
        pending = self.check_migrations()
        orphaned, stale, unresolved = self.check_consistency()
        self.findings = {
            "pending_migrations": pending,
            "orphaned_tags": orphaned,
            "stale_fts": stale,
            "unresolved_folders": unresolved,
        }
        problems = sum(len(v) for v in self.findings.values())

        print(f"\n📋 VALIDATION SUMMARY")
        print("=" * 50)
        if problems == 0:
            print("🎉 Store is consistent.")
            return True
        for name, rows in self.findings.items():
            status = "✅ PASS" if not rows else f"❌ FAIL ({len(rows)})"
            print(f"   {status} {name.replace('_', ' ')}")
        return False


def main():
    parser = argparse.ArgumentParser(description="Check the conversation store for inconsistencies")
    parser.add_argument("--db", default=str(config.DB_PATH), help=f"SQLite store (default: {config.DB_PATH})")
    args = parser.parse_args()

    validator = StoreValidator(args.db)
    success = validator.run_validation()
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()

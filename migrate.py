"""
Database migration script for the crypto ledger.
Brings an existing SQLite database up to the current schema: creates missing
tables and adds the columns introduced for explicit USDT funding links.
Safe to run repeatedly.
"""

import os
import sqlite3
from typing import List, Optional, Tuple

from sqlalchemy.engine import make_url

from config import get_settings
from db_engine import init_db

# (table, column, DDL type and default)
COLUMN_MIGRATIONS: List[Tuple[str, str, str]] = [
    ("crypto_transaction", "fee_in_crypto", "FLOAT"),
    ("crypto_transaction", "funding_source", "VARCHAR(4) NOT NULL DEFAULT 'CASH'"),
    ("crypto_transaction", "linked_transaction_id", "INTEGER REFERENCES crypto_transaction(id)"),
    ("p2p_transaction", "crypto_transaction_id", "INTEGER REFERENCES crypto_transaction(id)"),
]

INDEX_MIGRATIONS: List[Tuple[str, str, str]] = [
    ("ix_crypto_transaction_linked_transaction_id", "crypto_transaction", "linked_transaction_id"),
]


def get_db_file() -> Optional[str]:
    """Path of the configured SQLite database file, or None for other backends."""
    settings = get_settings()
    if not settings.is_sqlite or settings.is_in_memory:
        return None
    return make_url(settings.database_url).database


def add_column_if_missing(cursor: sqlite3.Cursor, table: str, column: str, ddl: str) -> bool:
    """Add a column to a table if it doesn't exist. Returns True if it was added."""
    cursor.execute(f"PRAGMA table_info({table})")
    columns = [col[1] for col in cursor.fetchall()]
    if not columns:
        print(f"Table '{table}' does not exist, skipping '{column}'.")
        return False

    if column in columns:
        print(f"✓ Column '{column}' already exists in {table} table.")
        return False

    print(f"Adding '{column}' column to {table} table...")
    cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
    print(f"✓ Added '{column}' column successfully.")
    return True


def migrate_columns(db_file: str) -> int:
    """Apply every column and index migration in one transaction."""
    conn = sqlite3.connect(db_file)
    cursor = conn.cursor()
    added = 0

    try:
        for table, column, ddl in COLUMN_MIGRATIONS:
            if add_column_if_missing(cursor, table, column, ddl):
                added += 1
        for index_name, table, column in INDEX_MIGRATIONS:
            cursor.execute(f"CREATE INDEX IF NOT EXISTS {index_name} ON {table} ({column})")
        conn.commit()

    except sqlite3.OperationalError as e:
        print(f"Error during migration: {e}")
        conn.rollback()
        raise
    finally:
        conn.close()

    return added


def run_all_migrations() -> None:
    """Run all pending migrations."""
    print("=" * 60)
    print("Crypto Ledger Database Migration")
    print("=" * 60)

    db_file = get_db_file()
    if db_file is None:
        print("Configured database is not a SQLite file. Nothing to migrate.")
        return

    if os.path.exists(db_file):
        migrate_columns(db_file)
    else:
        print(f"Database {db_file} does not exist. It will be created.")

    # Creates any table that is still missing
    init_db()

    print("=" * 60)
    print("Migration complete!")
    print("=" * 60)


if __name__ == "__main__":
    run_all_migrations()

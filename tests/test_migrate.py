"""Schema migration tests against a legacy SQLite file"""

import sqlite3

import pytest

from config import reload_settings
from migrate import get_db_file, migrate_columns


@pytest.fixture
def legacy_db(tmp_path):
    """A database created before funding links existed."""
    db_file = tmp_path / "legacy.db"
    conn = sqlite3.connect(db_file)
    conn.executescript("""
        CREATE TABLE crypto_asset (
            id INTEGER PRIMARY KEY, symbol VARCHAR NOT NULL, name VARCHAR NOT NULL,
            created_at DATETIME, updated_at DATETIME
        );
        CREATE TABLE crypto_transaction (
            id INTEGER PRIMARY KEY, asset_id INTEGER NOT NULL, transaction_type VARCHAR NOT NULL,
            quantity FLOAT NOT NULL, price_per_unit FLOAT NOT NULL, total_amount FLOAT NOT NULL,
            fee FLOAT NOT NULL, fee_currency VARCHAR NOT NULL, exchange VARCHAR, notes VARCHAR,
            transaction_date DATETIME, created_at DATETIME, updated_at DATETIME
        );
        INSERT INTO crypto_asset (id, symbol, name) VALUES (1, 'BTC', 'Bitcoin');
        INSERT INTO crypto_transaction
            (asset_id, transaction_type, quantity, price_per_unit, total_amount, fee, fee_currency)
            VALUES (1, 'BUY', 1, 100, 100, 0, 'USD');
    """)
    conn.commit()
    conn.close()
    return str(db_file)


def _columns(db_file, table):
    conn = sqlite3.connect(db_file)
    try:
        return [row[1] for row in conn.execute(f"PRAGMA table_info({table})")]
    finally:
        conn.close()


class TestMigrateColumns:

    def test_adds_missing_columns(self, legacy_db):
        added = migrate_columns(legacy_db)

        columns = _columns(legacy_db, "crypto_transaction")
        assert added == 3
        assert {"funding_source", "linked_transaction_id", "fee_in_crypto"} <= set(columns)

    def test_existing_rows_default_to_cash(self, legacy_db):
        migrate_columns(legacy_db)

        conn = sqlite3.connect(legacy_db)
        try:
            source, = conn.execute("SELECT funding_source FROM crypto_transaction").fetchone()
        finally:
            conn.close()
        assert source == "CASH"

    def test_is_idempotent(self, legacy_db):
        migrate_columns(legacy_db)
        assert migrate_columns(legacy_db) == 0


class TestDbFile:

    def test_in_memory_has_no_file(self):
        assert get_db_file() is None

    def test_file_url(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path}/ledger.db")
        reload_settings()
        assert get_db_file() == f"{tmp_path}/ledger.db"

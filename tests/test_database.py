import pathlib
import sqlite3
import sys

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config import StoreConfig
from database import CONTACT_HEADERS, SETTING_HEADERS, get_table_headers, init_db, table_exists


def _memory_config():
    return StoreConfig(data_dir=PROJECT_ROOT, database_name=':memory:')


def test_init_db_creates_tables_with_header_order():
    conn = sqlite3.connect(":memory:")
    config = _memory_config()

    init_db(conn=conn, config=config)

    for table_name in ("Contacts", "Activities", "Settings"):
        assert table_exists(conn, table_name)
    assert get_table_headers(conn, "Contacts") == list(CONTACT_HEADERS)
    assert get_table_headers(conn, "Settings") == list(SETTING_HEADERS)

    conn.close()


def test_init_db_backfills_missing_columns_and_keeps_rows():
    conn = sqlite3.connect(":memory:")
    cursor = conn.cursor()

    cursor.execute('CREATE TABLE "Settings" ("key", "value")')
    cursor.execute('INSERT INTO "Settings" VALUES (?, ?)', ("theme", "dark"))
    conn.commit()

    init_db(conn=conn, config=_memory_config(), tables=["Settings"])

    assert get_table_headers(conn, "Settings") == ["key", "value", "description"]
    cursor.execute('SELECT "key", "value", "description" FROM "Settings"')
    assert [tuple(row) for row in cursor.fetchall()] == [("theme", "dark", None)]
    assert not table_exists(conn, "Contacts")

    conn.close()


def test_cells_keep_their_scalar_types():
    conn = sqlite3.connect(":memory:")
    init_db(conn=conn, config=_memory_config())

    conn.execute('INSERT INTO "Settings" VALUES (?, ?, ?)', ("pageSize", 25, ""))
    value = conn.execute('SELECT "value" FROM "Settings"').fetchone()[0]

    assert value == 25
    conn.close()

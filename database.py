import sqlite3
import logging
from typing import Dict, List, Optional, Sequence

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from config import StoreConfig, load_config
from data_paths import ensure_data_root


CONTACT_HEADERS = (
    "id",
    "projectId",
    "type",
    "name",
    "title",
    "company",
    "industry",
    "email",
    "linkedin",
    "phone",
    "status",
    "priority",
    "assignee",
    "nextFollowUp",
    "notes",
    "score",
    "scoreBreakdown",
    "tags",
    "dateAdded",
    "lastModified",
    "lastContacted",
    "assignmentHistory",
)

ACTIVITY_HEADERS = ("id", "contactId", "type", "notes", "date", "user", "metadata")

SETTING_HEADERS = ("key", "value", "description")


def table_headers(config: StoreConfig) -> Dict[str, Sequence[str]]:
    """Map each configured table name to its header row."""
    return {
        config.contacts_table: CONTACT_HEADERS,
        config.activities_table: ACTIVITY_HEADERS,
        config.settings_table: SETTING_HEADERS,
    }


def quote_identifier(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def get_db_connection(config: Optional[StoreConfig] = None):
    """Establishes a connection to the SQLite database."""
    config = config or load_config()
    if str(config.database_file) != ":memory:":
        ensure_data_root(str(config.data_dir))
    conn = sqlite3.connect(str(config.database_file), timeout=30.0, isolation_level='DEFERRED')
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA temp_store=MEMORY;")
    except sqlite3.Error as e:
        logger.warning(f"Could not set PRAGMA settings: {e}")
    conn.row_factory = sqlite3.Row
    return conn


def table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    """Return ``True`` if the table exists in the connected database."""
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    )
    return cursor.fetchone() is not None


def get_table_headers(conn: sqlite3.Connection, table_name: str) -> List[str]:
    """Return the column names of ``table_name`` in definition order."""
    cursor = conn.execute(f"PRAGMA table_info({quote_identifier(table_name)})")
    return [row[1] for row in cursor.fetchall()]


def create_table(conn: sqlite3.Connection, table_name: str, headers: Sequence[str]) -> None:
    # Columns are declared without a type so cells keep whatever scalar was written.
    columns = ", ".join(quote_identifier(header) for header in headers)
    conn.execute(f"CREATE TABLE IF NOT EXISTS {quote_identifier(table_name)} ({columns})")


def _ensure_table_columns(conn: sqlite3.Connection, table_name: str, headers: Sequence[str]) -> None:
    existing = set(get_table_headers(conn, table_name))
    for header in headers:
        if header not in existing:
            logger.info("Adding missing column %s to %s", header, table_name)
            conn.execute(f"ALTER TABLE {quote_identifier(table_name)} ADD COLUMN {quote_identifier(header)}")


def init_db(conn: Optional[sqlite3.Connection] = None, config: Optional[StoreConfig] = None,
            tables: Optional[Sequence[str]] = None):
    """Initializes the database schema.

    Creates every configured table with its header columns and appends any
    header that an older table is missing. ``tables`` limits the work to a
    subset of table names.
    """
    config = config or load_config()
    owns_connection = conn is None
    if conn is None:
        conn = get_db_connection(config)
    try:
        for table_name, headers in table_headers(config).items():
            if tables is not None and table_name not in tables:
                continue
            if table_exists(conn, table_name):
                _ensure_table_columns(conn, table_name, headers)
            else:
                create_table(conn, table_name, headers)
                logger.info("Created table %s", table_name)
        conn.commit()
    finally:
        if owns_connection:
            conn.close()

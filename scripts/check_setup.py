"""Verify the contact manager store is set up and optionally save a sample contact."""
from __future__ import annotations

import argparse
import sqlite3
import sys
from typing import Optional, Sequence

from config import load_config
from database import get_db_connection
from services.records import RecordService
from services.tables import StoreError

SAMPLE_CONTACT = {
    "name": "Test Contact",
    "email": "test@example.com",
    "type": "Individual",
    "status": "New",
    "priority": "Medium",
    "company": "Test Company",
    "title": "Test Title",
}


def _format_line(ok: bool, message: str) -> str:
    return f"[{'ok' if ok else '!!'}] {message}"


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--add-sample", action="store_true", help="save a sample contact after checking tables")
    args = parser.parse_args(argv)

    config = load_config()
    service = RecordService(config)
    conn = get_db_connection(config)
    try:
        print(f"Database: {config.database_file}")
        report = service.check_setup(conn)
        for table_name, status in report.items():
            if status["exists"]:
                print(_format_line(True, f"{table_name} table found ({status['rows']} rows)"))
            else:
                print(_format_line(False, f'{table_name} table not found - create a table named "{table_name}"'))
        if not report[config.contacts_table]["exists"]:
            return 2

        if args.add_sample:
            try:
                result = service.save_contact(conn, dict(SAMPLE_CONTACT))
                conn.commit()
            except (StoreError, sqlite3.Error) as exc:
                conn.rollback()
                print(_format_line(False, f"Sample contact failed: {exc}"))
                return 3
            total = len(service.list_contacts(conn))
            print(_format_line(True, f"Sample contact {result['id']} {result['action']}; {total} contacts total"))
    finally:
        conn.close()

    print("Setup check completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())

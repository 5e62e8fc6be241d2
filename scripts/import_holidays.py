#!/usr/bin/env python3
"""
Import swim school holidays into Snowflake and recompute affected coverage.

Reads a CSV with columns name,start_date,end_date[,note]. Dates may be
DayKeys or ISO instants; they are normalized to Brisbane calendar days.
After inserting, every active weekly enrolment with a class inside the
imported ranges is recomputed.

Usage:
    python scripts/import_holidays.py holidays.csv
    python scripts/import_holidays.py holidays.csv --dry-run

Requires:
    - .env file with Snowflake credentials
"""

import csv
import sys
import uuid
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from src.config.settings import get_settings
from src.core.billing.dates import compare, to_day_key
from src.core.billing.errors import InvalidDateError, RecomputeBatchError
from src.core.billing.models import CoverageReason, HolidayRange
from src.core.billing.recompute import CoverageRecomputer
from src.infrastructure.snowflake.client import create_snowflake_connection
from src.infrastructure.snowflake.repositories.enrolments import (
    EnrolmentCoverageRepository,
    SnowflakeConfig,
)


def parse_holiday_rows(rows) -> tuple[list[dict], list[str]]:
    """
    Validate CSV rows into holiday dicts.

    Returns (holidays, errors). A row with a blank name, an unreadable date
    or an end before its start is reported and skipped.
    """
    holidays = []
    errors = []

    for line_number, row in enumerate(rows, start=2):
        name = (row.get('name') or '').strip()
        if not name:
            errors.append(f"line {line_number}: name is required")
            continue

        try:
            start_date = to_day_key(row.get('start_date') or '')
            end_date = to_day_key(row.get('end_date') or row.get('start_date') or '')
        except InvalidDateError as e:
            errors.append(f"line {line_number}: {e}")
            continue

        if compare(end_date, start_date) < 0:
            errors.append(f"line {line_number}: end date must be on or after start date")
            continue

        holidays.append({
            'holiday_id': str(uuid.uuid4()),
            'name': name,
            'start_date': start_date,
            'end_date': end_date,
            'note': (row.get('note') or '').strip() or None,
        })

    return holidays, errors


def insert_holidays(conn, holidays: list[dict]) -> None:
    """Insert all holidays in one transaction."""
    cursor = conn.cursor()
    try:
        cursor.execute("BEGIN")
        for holiday in holidays:
            cursor.execute("""
                INSERT INTO holidays (holiday_id, name, start_date, end_date, note)
                VALUES (%s, %s, %s, %s, %s)
            """, (
                holiday['holiday_id'],
                holiday['name'],
                holiday['start_date'],
                holiday['end_date'],
                holiday['note'],
            ))
            print(f"[OK] {holiday['name']}: {holiday['start_date']} to {holiday['end_date']}")
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cursor.close()


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Import holidays and recompute coverage')
    parser.add_argument('file', help='CSV file with name,start_date,end_date[,note]')
    parser.add_argument('--dry-run', action='store_true', help='Parse only, don\'t insert')
    args = parser.parse_args()

    filepath = Path(args.file)
    if not filepath.exists():
        print(f"ERROR: Cannot find {args.file}")
        sys.exit(1)

    with open(filepath, newline='', encoding='utf-8') as f:
        holidays, errors = parse_holiday_rows(csv.DictReader(f))

    for error in errors:
        print(f"[ERR] {error}")

    if not holidays:
        print("ERROR: No valid holidays found")
        sys.exit(1)

    if args.dry_run:
        print("\n=== DRY RUN - No data will be inserted ===\n")
        for holiday in holidays:
            print(f"Would insert: {holiday['name']} {holiday['start_date']} to {holiday['end_date']}")
        sys.exit(0 if not errors else 1)

    settings = get_settings()
    missing = settings.validate_required_fields()
    if missing:
        print(f"ERROR: Missing configuration: {', '.join(missing)}")
        sys.exit(1)

    config = SnowflakeConfig(
        account=settings.snowflake_account,
        user=settings.snowflake_user,
        password=settings.snowflake_password or None,
        private_key_path=settings.snowflake_private_key_path,
        private_key_base64=settings.snowflake_private_key_base64,
        database=settings.snowflake_database,
        schema=settings.snowflake_schema,
        warehouse=settings.snowflake_warehouse,
        role=settings.snowflake_role,
    )

    with create_snowflake_connection(config=config, mock_mode=settings.snowflake_mock_mode) as conn:
        insert_holidays(conn, holidays)

        recomputer = CoverageRecomputer(
            EnrolmentCoverageRepository(conn),
            horizon_fallback_days=settings.coverage_horizon_fallback_days,
            batch_size=settings.recompute_batch_size,
        )
        ranges = [HolidayRange.of(h['start_date'], h['end_date']) for h in holidays]

        try:
            results = recomputer.recompute_for_holidays(ranges, CoverageReason.HOLIDAY_ADDED)
            failed = {}
        except RecomputeBatchError as e:
            results = e.results
            failed = e.failures

    print(f"\n=== Import Complete ===")
    print(f"Holidays inserted: {len(holidays)}")
    print(f"Enrolments recomputed: {len(results)}")
    for enrolment_id, error in sorted(failed.items()):
        print(f"[ERR] Recompute failed for {enrolment_id}: {error}")

    sys.exit(0 if not errors and not failed else 1)


if __name__ == '__main__':
    main()

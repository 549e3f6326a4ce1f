#!/usr/bin/env python3
"""
Employee Data Sync

Reads employee rows from a local source (CSV, Excel or a MySQL query) and
posts them to the HRM API in one batch.

config.json keys used:
    data_source   'csv' | 'excel' | 'database'
    source_file   the CSV / Excel file, or a JSON file with database settings:
                  {"host": ..., "username": ..., "password": ..., "database": ..., "query": ...}
"""

import argparse
import csv
import json
import logging
import os
import sys

import pandas as pd
import pymysql

from agent_config import load_config, setup_logging
from hrm_api_client import HRMAPIClient
from sync_models import ConfigurationError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('employee_id', 'first_name')
REQUIRED_DB_KEYS = ('host', 'username', 'database', 'query')


def _clean_value(value):
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _valid_rows(rows, source_label):
    """Keep rows that carry every required field"""
    employees = []
    for row in rows:
        if any(not row.get(f) for f in REQUIRED_FIELDS):
            logger.warning(f'Skipping {source_label} row with missing required data')
            continue
        employees.append(row)
    return employees


def _check_header(header, source_label):
    missing = [f for f in REQUIRED_FIELDS if f not in header]
    if missing:
        logger.error(f"Required field missing in {source_label}: {', '.join(missing)}")
        return False
    return True


def get_employee_data_from_csv(source_file):
    """Rows of a CSV file with a header line; header names are case-insensitive"""
    try:
        with open(source_file, 'r', encoding='utf-8-sig', newline='') as f:
            reader = csv.reader(f)
            header = next(reader, None)
            if not header:
                logger.error('Failed to read CSV header')
                return []

            header = [h.strip().lower() for h in header]
            if not _check_header(header, 'CSV'):
                return []

            rows = []
            for data in reader:
                rows.append({field: data[i].strip() for i, field in enumerate(header) if i < len(data)})
    except OSError as e:
        logger.error(f'Failed to open CSV file: {source_file}: {e}')
        return []

    return _valid_rows(rows, 'CSV')


def get_employee_data_from_excel(source_file):
    """Rows of the first worksheet; first row is the header"""
    try:
        df = pd.read_excel(source_file, engine='openpyxl', dtype=object)
    except Exception as e:
        logger.error(f'Excel parsing error: {str(e)}')
        return []

    df.columns = [str(c).strip().lower() for c in df.columns]
    if not _check_header(list(df.columns), 'Excel'):
        return []

    df = df.where(pd.notnull(df), None)
    rows = [
        {column: _clean_value(value) for column, value in record.items()}
        for record in df.to_dict(orient='records')
    ]
    return _valid_rows(rows, 'Excel')


def get_employee_data_from_database(db_config_file):
    """Run the configured query against MySQL and return the rows as dicts"""
    try:
        with open(db_config_file, 'r', encoding='utf-8') as f:
            db_config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f'Invalid JSON in database config file: {e}')
        return []

    if any(key not in db_config for key in REQUIRED_DB_KEYS):
        logger.error('Missing required database configuration')
        return []

    try:
        connection = pymysql.connect(
            host=db_config['host'],
            port=int(db_config.get('port', 3306)),
            user=db_config['username'],
            password=db_config.get('password', ''),
            database=db_config['database'],
            charset='utf8mb4',
            cursorclass=pymysql.cursors.DictCursor
        )
    except pymysql.MySQLError as e:
        logger.error(f'Database error: {str(e)}')
        return []

    try:
        with connection.cursor() as cursor:
            cursor.execute(db_config['query'])
            return list(cursor.fetchall())
    except pymysql.MySQLError as e:
        logger.error(f'Database error: {str(e)}')
        return []
    finally:
        connection.close()


READERS = {
    'csv': get_employee_data_from_csv,
    'excel': get_employee_data_from_excel,
    'database': get_employee_data_from_database,
}


def get_employee_data(data_source, source_file):
    """Read employees from the configured source"""
    reader = READERS.get(data_source)
    if reader is None:
        raise ConfigurationError(f'Unsupported data source: {data_source}')
    if not source_file or not os.path.exists(source_file):
        raise ConfigurationError(f'Source file not found: {source_file}')
    return reader(source_file)


def main(argv=None):
    parser = argparse.ArgumentParser(description='Sync employee data from CSV, Excel or MySQL to the HRM API')
    parser.add_argument('-c', '--config', help='Path to config.json')
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging('employee_sync', config)
    logger.info('Employee sync script started')

    try:
        employees = get_employee_data(config.data_source, config.source_file)
    except ConfigurationError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not employees:
        logger.warning('No employee data found to sync')
        print("Warning: No employee data found to sync")
        return 1

    api_client = HRMAPIClient.from_config(config)
    result = api_client.sync_employees(config.api_endpoint, employees)

    if not result:
        print("Employee sync failed. Check logs for details.")
        return 1

    summary = result.get('summary') or {}
    print("Employee sync completed successfully.")
    for key in ('created', 'updated', 'skipped', 'errors', 'total'):
        print(f"{key.capitalize()}: {summary.get(key, 0)}")

    logger.info('Employee sync script completed')
    return 0


if __name__ == "__main__":
    sys.exit(main())

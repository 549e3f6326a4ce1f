#!/usr/bin/env python3

"""
Clean Old Logs - retention for the agent's dated log files

Every script logs to logs/<name>_YYYY-MM-DD.log (plus rotated .1, .2 ...).
This utility deletes files whose date is older than clean_old_logs_days and
runs at most once per day (tracked via a marker file).

Usage:
    python3 clean_old_logs.py [--dry-run] [--force] [-c CONFIG]
"""

import argparse
import datetime
import glob
import logging
import os
import re
import sys

from agent_config import load_config, setup_logging
from sync_models import ConfigurationError

logger = logging.getLogger(__name__)

MARKER_FILE_NAME = '.last_clean_logs_date'

# zkteco_agent_2025-10-15.log, zkteco_agent_2025-10-15.log.3, zkteco_data_2025-10-15_08-09-39.json
LOG_DATE_PATTERN = re.compile(r'_(\d{4}-\d{2}-\d{2})(?:_\d{2}-\d{2}-\d{2})?\.(?:log|json)(?:\.\d+)?$')


def marker_file(config):
    return os.path.join(config.logs_directory, MARKER_FILE_NAME)


def get_last_clean_date(config):
    """Get the last date when log cleanup was executed"""
    path = marker_file(config)
    if not os.path.exists(path):
        return None
    try:
        with open(path, 'r') as f:
            return datetime.datetime.strptime(f.read().strip(), '%Y-%m-%d').date()
    except (OSError, ValueError):
        return None


def set_last_clean_date(config, date=None):
    """Set the last date when log cleanup was executed"""
    if date is None:
        date = datetime.date.today()

    os.makedirs(config.logs_directory, exist_ok=True)
    with open(marker_file(config), 'w') as f:
        f.write(date.strftime('%Y-%m-%d'))


def should_run_cleanup(config, today=None):
    """Check if should run cleanup (once per day, disabled when days == 0)"""
    if config.clean_old_logs_days <= 0:
        return False

    today = today or datetime.date.today()
    last_run_date = get_last_clean_date(config)
    return last_run_date is None or last_run_date < today


def parse_log_file_date(filename):
    """Date encoded in a log file name, or None"""
    match = LOG_DATE_PATTERN.search(os.path.basename(filename))
    if not match:
        return None
    try:
        return datetime.datetime.strptime(match.group(1), '%Y-%m-%d').date()
    except ValueError:
        return None


def format_size(size_bytes):
    """Format byte size to human readable format"""
    for unit in ('B', 'KB', 'MB', 'GB'):
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"


def run_cleanup(config, dry_run=False, force=False, today=None):
    """Delete dated log files older than clean_old_logs_days"""
    today = today or datetime.date.today()

    if not force and not should_run_cleanup(config, today):
        return {"success": True, "skipped": True, "cleaned_files": 0, "total_size_freed": 0}

    cutoff_date = today - datetime.timedelta(days=max(config.clean_old_logs_days, 0))
    cleaned_files = []
    total_size_freed = 0
    errors = []

    for path in sorted(glob.glob(os.path.join(config.logs_directory, '*'))):
        if not os.path.isfile(path):
            continue
        file_date = parse_log_file_date(path)
        if file_date is None or file_date >= cutoff_date:
            continue

        size = os.path.getsize(path)
        if dry_run:
            logger.info(f"[DRY RUN] Would delete {path} ({format_size(size)})")
        else:
            try:
                os.remove(path)
            except OSError as e:
                errors.append(f"{path}: {e}")
                logger.error(f"Failed to delete {path}: {e}")
                continue
            logger.info(f"Deleted old log file {path} ({format_size(size)})")
        cleaned_files.append(path)
        total_size_freed += size

    if not dry_run:
        set_last_clean_date(config, today)

    logger.info(f"Log cleanup: {len(cleaned_files)} files older than {cutoff_date}, {format_size(total_size_freed)}")

    return {
        "success": not errors,
        "skipped": False,
        "cleaned_files": len(cleaned_files),
        "files": cleaned_files,
        "total_size_freed": total_size_freed,
        "errors": errors,
    }


def main(argv=None):
    parser = argparse.ArgumentParser(description='Delete agent log files older than clean_old_logs_days')
    parser.add_argument('-c', '--config', help='Path to config.json')
    parser.add_argument('--dry-run', action='store_true', help='Show what would be deleted without deleting')
    parser.add_argument('--force', action='store_true', help='Run even if cleanup already ran today')
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging('clean_old_logs', config)
    result = run_cleanup(config, dry_run=args.dry_run, force=args.force)

    if result.get("skipped"):
        print("Cleanup already ran today (use --force to run again)")
    else:
        print(f"Cleaned {result['cleaned_files']} files, freed {format_size(result['total_size_freed'])}")
    return 0 if result["success"] else 1


if __name__ == "__main__":
    sys.exit(main())

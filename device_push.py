#!/usr/bin/env python3
"""
Branch Employees to ZKTeco Device Push

Gets the employees of one branch from the HRM API and writes them into the
user table of a device from config.json.

Usage:
    python3 device_push.py -b BRANCH_ID [-d DEVICE_INDEX] [-p] [-y]

Options:
    -b, --branch    Branch ID to get employees
    -d, --device    Device index from config.json (defaults to 0, first device)
    -p, --push      Push employees to the device (otherwise only list them)
    -y, --yes       Clear existing users on the device without asking
"""

import argparse
import logging
import random
import re
import sys

import requests
from unidecode import unidecode

from agent_config import load_config, setup_logging
from device_client import MAX_DEVICE_NAME_LENGTH, device_session, make_client_factory
from hrm_api_client import HRMAPIClient
from sync_models import (ConfigurationError, DeviceConnectionError, EmployeeRecord, ErrorKind,
                         PushOutcome, PushSummary, safe_call)

logger = logging.getLogger(__name__)

UID_WIDTH = 5
NO_NATIVE_ID = 'N/A'


def generate_uid(employee_id, rng=random):
    """Derive a 5 digit device uid from an employee id.

    'E042' -> '00042', 'EMP1234567' -> '12345'. Ids with fewer than two
    digits get a random '1xxxx' uid, so those are not stable between runs.
    """
    numeric_id = re.sub(r'[^0-9]', '', str(employee_id or ''))

    if len(numeric_id) < 2:
        return '1' + str(rng.randint(1000, 9999)).zfill(4)

    return numeric_id[:UID_WIDTH].zfill(UID_WIDTH)


def resolve_uid(employee, rng=random):
    native = (employee.native_user_id or '').strip()
    if native and native != NO_NATIVE_ID:
        return native
    return generate_uid(employee.id, rng)


def shorten_name(full_name, max_length=MAX_DEVICE_NAME_LENGTH):
    """Convert to plain ASCII and shorten to what the terminal can show"""
    if not full_name:
        return full_name

    text_processed = unidecode(full_name)
    text_processed = ' '.join(text_processed.split()).strip()

    if len(text_processed) <= max_length:
        return text_processed

    parts = text_processed.split()
    if len(parts) > 1:
        initials = "".join(part[0].upper() for part in parts[:-1])
        return f"{initials} {parts[-1]}"[:max_length]
    return text_processed[:max_length]


class PushWorker:
    """Writes a list of employees into one device's user table"""

    def __init__(self, client_factory, rng=random):
        self.client_factory = client_factory
        self.rng = rng

    def push(self, device, employees, clear_first=False):
        employees = list(employees)
        client = self.client_factory()

        logger.info(f"Pushing {len(employees)} employees to device at {device.ip}:{device.port}")

        try:
            with device_session(client, device):
                self._log_device_info(client)

                if clear_first:
                    self._clear_users(client)

                outcomes = [self._push_one(client, employee) for employee in employees]
        except DeviceConnectionError as e:
            logger.error(f"{e}. Please check the IP address and port.")
            # No employee was attempted: the whole batch counts as failed
            return PushSummary(
                failed_count=len(employees),
                total_count=len(employees),
                outcomes=[PushOutcome(employee_id='', assigned_uid=None, succeeded=False, error_detail=str(e))],
                connected=False,
                error_detail=str(e),
            )

        summary = PushSummary.from_outcomes(outcomes)
        logger.info(
            f"Finished pushing employees to device: success={summary.success_count}, "
            f"failed={summary.failed_count}, total={summary.total_count}"
        )
        return summary

    def _log_device_info(self, client):
        for label, fn in (("Device Name", client.device_name),
                          ("Serial Number", client.serial_number),
                          ("Device Time", client.get_time)):
            result = safe_call(fn, ErrorKind.READ)
            if result.ok:
                logger.info(f"- {label}: {result.value}")

    def _clear_users(self, client):
        logger.info("Clearing all users from device...")
        result = safe_call(client.clear_users, ErrorKind.CLEAR)
        if result.ok:
            logger.info("All users cleared successfully.")
        else:
            logger.error(f"Failed to clear users: {result.detail}")
        return result

    def _push_one(self, client, employee):
        uid = resolve_uid(employee, self.rng)
        name = shorten_name(employee.name)

        result = safe_call(client.set_user, ErrorKind.WRITE, uid, employee.id, name, '', 0, True)
        if result.ok:
            logger.info(f"Added user: {employee.name} (ID: {employee.id}, UID: {uid})")
            return PushOutcome(employee_id=employee.id, assigned_uid=uid, succeeded=True)

        logger.error(f"Failed to add user: {employee.name} (ID: {employee.id}, UID: {uid}): {result.detail}")
        return PushOutcome(employee_id=employee.id, assigned_uid=uid, succeeded=False,
                           error_detail=result.detail)


def format_employee_table(employees):
    """Employees as a fixed-width text table"""
    if not employees:
        return "No employees found."

    rows = [(e.id, e.name, e.native_user_id or NO_NATIVE_ID, e.department or NO_NATIVE_ID) for e in employees]
    headers = ('ID', 'Name', 'User ID', 'Department')
    minimums = (2, 4, 7, 10)
    widths = [
        max([minimum] + [len(str(row[i])) for row in rows]) + 2
        for i, minimum in enumerate(minimums)
    ]

    lines = [
        " | ".join(h.ljust(w) for h, w in zip(headers, widths)).rstrip(),
        "-+-".join('-' * w for w in widths),
    ]
    for row in rows:
        lines.append(" | ".join(str(v).ljust(w) for v, w in zip(row, widths)).rstrip())
    return "\n".join(lines)


def confirm(message):
    """Simple y/n prompt"""
    try:
        answer = input(f"{message} (y/n): ")
    except EOFError:
        return False
    return answer.strip().lower() == 'y'


def main(argv=None):
    parser = argparse.ArgumentParser(description='Push branch employees from the HRM API to a ZKTeco device')
    parser.add_argument('-b', '--branch', help='Branch ID to get employees')
    parser.add_argument('-d', '--device', default='0',
                        help='Device index from config.json (defaults to 0, first device)')
    parser.add_argument('-p', '--push', action='store_true', help='Push employees to the device')
    parser.add_argument('-y', '--yes', action='store_true',
                        help='Clear existing users on the device without asking')
    parser.add_argument('-c', '--config', help='Path to config.json')

    args = parser.parse_args(argv)

    if not args.branch:
        print("Error: Branch ID (-b, --branch) is required.")
        parser.print_help()
        return 1

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging('device_push', config)

    try:
        device_index = int(args.device)
    except ValueError:
        device_index = -1

    if not 0 <= device_index < len(config.devices):
        print(f"Error: Device index {args.device} not found in config.json")
        print("Available devices:")
        for index, device in enumerate(config.devices):
            print(f"  {index}: {device.name} ({device.ip})")
        return 1

    device = config.devices[device_index]
    print(f"Selected device: {device.name} ({device.ip}:{device.port})\n")

    api_client = HRMAPIClient.from_config(config)
    try:
        branch_name, raw_employees = api_client.get_branch_employees(args.branch)
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.error(f"API request failed: {e}")
        print(f"API request failed: {e}")
        return 1

    employees = [EmployeeRecord.from_dict(e) for e in raw_employees]
    print(f"Retrieved {len(employees)} employees for branch: {branch_name}\n")
    print(format_employee_table(employees))
    print()

    if not args.push:
        print("Use -p flag to push these employees to the device.")
        return 0

    clear_first = args.yes or confirm("Do you want to clear all existing users from the device?")

    summary = PushWorker(make_client_factory(config)).push(device, employees, clear_first=clear_first)

    if not summary.connected:
        print("Could not connect to the device. Please check the IP address and port.")
        return 0

    print("\nFinished pushing employees to device.")
    print(f"Success: {summary.success_count}")
    print(f"Failed: {summary.failed_count}")
    print(f"Total processed: {summary.total_count}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

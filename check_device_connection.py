#!/usr/bin/env python3
"""
ZKTeco Device Connection Test

Connects to every device in config.json, prints device information and the
last 5 attendance records. With --api the HRM API is checked first. With
--dump, user and attendance data are also written as JSON to
logs/zkteco_data_<timestamp>.json for inspection.

Usage:
    python3 check_device_connection.py [--dump] [--device DEVICE_ID] [--api]
"""

import argparse
import datetime
import json
import logging
import os
import sys

from agent_config import load_config, setup_logging
from device_client import device_session, make_client_factory
from hrm_api_client import HRMAPIClient
from record_transformer import attendance_to_dict, user_to_dict
from sync_models import ConfigurationError, DeviceConnectionError, ErrorKind, safe_call

logger = logging.getLogger(__name__)


def format_attendance_table(records, limit=5):
    lines = [f"{'User ID':<10} | {'State':<5} | Timestamp", "-" * 60]
    for record in records[-limit:]:
        lines.append(f"{record.user_id:<10} | {str(record.state):<5} | {record.timestamp}")
    return "\n".join(lines)


def check_device(client, device, dump=False):
    """Connect, read and report one device; returns a dict for the dump file"""
    result = {"device_id": device.id, "name": device.name, "ip": device.ip, "port": device.port,
              "connected": False}

    print(f"Testing connection to device: {device.label}")
    try:
        with device_session(client, device):
            result["connected"] = True
            print("Connection: SUCCESS\n")

            print("Device Information:")
            for key, label, fn in (("device_name", "Device Name", client.device_name),
                                   ("serial_number", "Serial Number", client.serial_number),
                                   ("device_time", "Device Time", client.get_time)):
                value = safe_call(fn, ErrorKind.READ)
                result[key] = value.value if value.ok else None
                print(f"- {label}: {value.value if value.ok else 'N/A (' + value.detail + ')'}")
            print()

            attendance = safe_call(client.get_attendance, ErrorKind.READ)
            records = list(attendance.value or []) if attendance.ok else []
            if not attendance.ok:
                print(f"Could not get attendance data: {attendance.detail}")
            print(f"Found {len(records)} attendance records.\n")
            if records:
                print("Last 5 attendance records:")
                print(format_attendance_table(records))
                print()

            if dump:
                users = safe_call(client.get_users, ErrorKind.READ)
                user_list = list(users.value or []) if users.ok else []
                print(f"Retrieved {len(user_list)} user records")
                result["users"] = [user_to_dict(u) for u in user_list]
                result["attendance"] = [attendance_to_dict(a) for a in records]
    except DeviceConnectionError as e:
        print("Connection: FAILED")
        print("Could not connect to the device. Please check the IP address and port.")
        logger.error(str(e))

    print("\n" + "=" * 50 + "\n")
    return result


def check_api(api_client):
    print(f"Testing connection to HRM API: {api_client.base_url}")
    reachable = api_client.test_connection()
    print(f"HRM API: {'REACHABLE' if reachable else 'UNREACHABLE'}")
    print("\n" + "=" * 50 + "\n")
    return reachable


def write_dump(results, logs_directory):
    os.makedirs(logs_directory, exist_ok=True)
    stamp = datetime.datetime.now().strftime('%Y-%m-%d_%H-%M-%S')
    dump_file = os.path.join(logs_directory, f"zkteco_data_{stamp}.json")
    with open(dump_file, 'w', encoding='utf-8') as f:
        json.dump(results, f, indent=2, ensure_ascii=False, default=str)
    return dump_file


def main(argv=None):
    parser = argparse.ArgumentParser(description='Test the connection to the ZKTeco devices in config.json')
    parser.add_argument('-c', '--config', help='Path to config.json')
    parser.add_argument('--device', help='Only test the device with this id')
    parser.add_argument('--dump', action='store_true', help='Write user and attendance data to a JSON file')
    parser.add_argument('--api', action='store_true', help='Also check that the HRM API is reachable')
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging('check_device_connection', config)

    devices = config.devices
    if args.device:
        devices = [d for d in devices if d.id == args.device]
        if not devices:
            print(f"Device '{args.device}' not found in configuration")
            print("Available devices:")
            for device in config.devices:
                print(f"  - {device.id}: {device.name} ({device.ip})")
            return 1

    print("ZKTeco Device Connection Test")
    print("============================\n")

    api_ok = check_api(HRMAPIClient.from_config(config)) if args.api else True

    factory = make_client_factory(config)
    results = [check_device(factory(), device, dump=args.dump) for device in devices]

    if args.dump:
        print(f"Log file saved to: {write_dump(results, config.logs_directory)}")

    print("Test completed.")
    return 0 if api_ok else 1


if __name__ == "__main__":
    sys.exit(main())

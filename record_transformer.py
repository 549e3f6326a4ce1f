#!/usr/bin/env python3
"""Turn records read from a terminal into the JSON payload the HRM API accepts"""

import datetime

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'


def format_timestamp(value):
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.strftime(TIMESTAMP_FORMAT)
    return str(value) if value is not None else None


def attendance_to_dict(record):
    data = {
        'id': record.user_id,
        'state': record.state,
        'timestamp': format_timestamp(record.timestamp),
    }
    if record.uid is not None:
        data['uid'] = record.uid
    if record.punch is not None:
        data['type'] = record.punch
    return data


def user_to_dict(user):
    return {
        'uid': user.uid,
        'userid': user.user_id,
        'name': user.name,
        'role': user.privilege,
        'password': user.password,
        'cardno': user.card,
    }


def build_payload(attendance, users, device, serial=None):
    """Build the sync payload for one device.

    Empty attendance or user lists are left out instead of sent as [].
    """
    payload = {
        'device_id': device.id,
        'device_name': device.name,
        'device_ip': device.ip,
    }

    if serial:
        payload['serial_number'] = serial

    if attendance:
        payload['attendance_data'] = [attendance_to_dict(a) for a in attendance]

    if users:
        payload['user_data'] = [user_to_dict(u) for u in users]

    return payload

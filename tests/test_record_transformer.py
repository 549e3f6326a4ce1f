"""
Tests for the sync payload builder.
"""

import datetime

from conftest import make_attendance, make_users
from record_transformer import attendance_to_dict, build_payload, format_timestamp, user_to_dict
from sync_models import AttendanceRecord, DeviceDescriptor, UserRecord


class TestBuildPayload:

    def test_device_fields_always_present(self, device):
        payload = build_payload([], [], device)

        assert payload == {'device_id': '1', 'device_name': 'Gate', 'device_ip': '10.0.0.1'}

    def test_empty_lists_are_omitted(self, device):
        payload = build_payload(make_attendance(2), [], device)

        assert 'attendance_data' in payload
        assert 'user_data' not in payload

    def test_serial_number_only_when_known(self, device):
        assert 'serial_number' not in build_payload(make_attendance(1), [], device, serial=None)
        assert 'serial_number' not in build_payload(make_attendance(1), [], device, serial='')
        assert build_payload(make_attendance(1), [], device, serial='ABC123')['serial_number'] == 'ABC123'

    def test_records_pass_through_in_order(self, device):
        attendance = make_attendance(3)
        users = make_users(2)

        payload = build_payload(attendance, users, device)

        assert [a['uid'] for a in payload['attendance_data']] == [1, 2, 3]
        assert [u['userid'] for u in payload['user_data']] == ['100', '101']

    def test_is_deterministic_and_does_not_mutate_inputs(self, device):
        attendance = make_attendance(2)
        users = make_users(2)
        snapshot = (list(attendance), list(users))

        first = build_payload(attendance, users, device, 'SN')
        second = build_payload(attendance, users, device, 'SN')

        assert first == second
        assert (attendance, users) == snapshot


class TestRecordShapes:

    def test_attendance_entry(self):
        record = AttendanceRecord(user_id='42', state=1, timestamp=datetime.datetime(2025, 3, 1, 8, 5, 9), uid=7, punch=0)

        assert attendance_to_dict(record) == {
            'id': '42', 'state': 1, 'timestamp': '2025-03-01 08:05:09', 'uid': 7, 'type': 0,
        }

    def test_attendance_entry_without_optional_fields(self):
        record = AttendanceRecord(user_id='42', state=0, timestamp='2025-03-01 08:05:09')

        assert attendance_to_dict(record) == {'id': '42', 'state': 0, 'timestamp': '2025-03-01 08:05:09'}

    def test_user_entry(self):
        user = UserRecord(uid=3, user_id='E3', name='Ann', privilege=14, password='12', card=999)

        assert user_to_dict(user) == {
            'uid': 3, 'userid': 'E3', 'name': 'Ann', 'role': 14, 'password': '12', 'cardno': 999,
        }

    def test_format_timestamp(self):
        assert format_timestamp(None) is None
        assert format_timestamp('raw') == 'raw'
        assert format_timestamp(datetime.datetime(2024, 1, 2, 3, 4, 5)) == '2024-01-02 03:04:05'


def test_descriptor_label():
    assert DeviceDescriptor(id='1', name='Gate', ip='1.2.3.4').label == 'Gate (1.2.3.4:4370)'

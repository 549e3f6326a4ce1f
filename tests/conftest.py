"""
Pytest configuration and fixtures for the ZKTeco agent tests.

FakeDeviceClient and FakeUploader stand in for pyzk and the HRM API so no
test touches the network.
"""

import datetime
import json
import logging
from logging.handlers import RotatingFileHandler

import pytest

from agent_config import RunContext, parse_config
from hrm_api_client import UploadResponse
from sync_models import AttendanceRecord, DeviceDescriptor, UserRecord


# ============================================
# Fakes
# ============================================

class FakeDeviceClient:
    """Records every call; behaviour is driven by constructor arguments.

    connect_results is consumed one value per connect() call (the last value
    repeats); a value that is an Exception instance is raised.
    """

    def __init__(self, connect_results=(True,), users=(), attendance=(), users_error=None,
                 attendance_error=None, clear_result=True, serial="SN-0001",
                 set_user_results=None, clear_users_result=True):
        self.connect_results = list(connect_results)
        self.users = list(users)
        self.attendance = list(attendance)
        self.users_error = users_error
        self.attendance_error = attendance_error
        self.clear_result = clear_result
        self.serial = serial
        self.set_user_results = set_user_results or {}
        self.clear_users_result = clear_users_result
        self.calls = []
        self.written_users = []
        self.open_sessions = 0

    def _record(self, name, *args):
        self.calls.append((name,) + args)

    def call_names(self):
        return [c[0] for c in self.calls]

    def count(self, name):
        return self.call_names().count(name)

    def connect(self, ip, port=4370):
        self._record('connect', ip, port)
        result = self.connect_results.pop(0) if len(self.connect_results) > 1 else self.connect_results[0]
        if isinstance(result, Exception):
            raise result
        if result:
            self.open_sessions += 1
        return result

    def disconnect(self):
        self._record('disconnect')
        self.open_sessions -= 1

    def device_name(self):
        self._record('device_name')
        return "ZK-Test"

    def serial_number(self):
        self._record('serial_number')
        return self.serial

    def get_time(self):
        self._record('get_time')
        return "2025-01-01 08:00:00"

    def get_users(self):
        self._record('get_users')
        if self.users_error:
            raise self.users_error
        return list(self.users)

    def get_attendance(self):
        self._record('get_attendance')
        if self.attendance_error:
            raise self.attendance_error
        return list(self.attendance)

    def clear_attendance(self):
        self._record('clear_attendance')
        if isinstance(self.clear_result, Exception):
            raise self.clear_result
        return self.clear_result

    def clear_users(self):
        self._record('clear_users')
        return self.clear_users_result

    def set_user(self, uid, employee_id, name, password='', privilege=0, enabled=True):
        self._record('set_user', uid, employee_id, name)
        result = self.set_user_results.get(employee_id, True)
        if isinstance(result, Exception):
            raise result
        if result:
            self.written_users.append((uid, employee_id, name))
        return result


class FakeUploader:
    """HRM API stand-in: returns queued responses and keeps every posted payload"""

    def __init__(self, status_code=200, body=None, error=None):
        if body is None:
            body = {"status": True, "message": "Data synced"}
        self.status_code = status_code
        self.body = body if isinstance(body, str) else json.dumps(body)
        self.error = error
        self.posts = []

    def post(self, url, json_body):
        self.posts.append((url, json_body))
        if self.error:
            raise self.error
        return UploadResponse(status_code=self.status_code, body=self.body)


# ============================================
# Data helpers
# ============================================

def make_attendance(count, user_id="7"):
    start = datetime.datetime(2025, 3, 1, 8, 0, 0)
    return [
        AttendanceRecord(user_id=user_id, state=1, timestamp=start + datetime.timedelta(minutes=i), uid=i + 1, punch=0)
        for i in range(count)
    ]


def make_users(count):
    return [UserRecord(uid=i + 1, user_id=str(100 + i), name=f"User {i}") for i in range(count)]


def make_config(tmp_path, **overrides):
    data = {
        "devices": [{"id": "1", "name": "Gate", "ip": "10.0.0.1", "port": 4370}],
        "api_endpoint": "https://hrm.example.org/api/attendance/sync",
        "api_key": "test-key",
        "logs_directory": str(tmp_path / "logs"),
    }
    data.update(overrides)
    return parse_config(data)


def make_context(config, uploader=None, clients=None):
    """Context whose client factory hands out the given fake clients in order"""
    clients = list(clients or [FakeDeviceClient()])
    issued = []

    def factory():
        client = clients.pop(0) if len(clients) > 1 else clients[0]
        issued.append(client)
        return client

    context = RunContext(config=config, api_client=uploader or FakeUploader(), client_factory=factory)
    context.issued_clients = issued
    return context


# ============================================
# Fixtures
# ============================================

@pytest.fixture(autouse=True)
def restore_root_logging():
    """CLI entry points call setup_logging, which replaces the root handlers"""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if isinstance(handler, RotatingFileHandler) or type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def device():
    return DeviceDescriptor(id="1", name="Gate", ip="10.0.0.1", port=4370)


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def config_file(tmp_path):
    """Write a config.json and return its path"""
    def _write(**overrides):
        data = {
            "devices": [
                {"id": "1", "name": "Gate", "ip": "10.0.0.1"},
                {"id": "2", "name": "Warehouse", "ip": "10.0.0.2", "port": 4371},
            ],
            "api_endpoint": "https://hrm.example.org/api/attendance/sync",
            "api_key": "test-key",
            "logs_directory": str(tmp_path / "logs"),
        }
        data.update(overrides)
        path = tmp_path / "config.json"
        path.write_text(json.dumps(data))
        return str(path)
    return _write

#!/usr/bin/env python3
"""
Device client for ZKTeco terminals

ZKDeviceClient wraps pyzk's ZK object behind the small set of operations the
agent needs and normalises pyzk's User/Attendance objects into UserRecord and
AttendanceRecord. device_session() is the only place a connection is opened
and it always closes it again.
"""

import logging
from contextlib import contextmanager

from zk import ZK, const
from zk.exception import ZKError

from sync_models import AttendanceRecord, ClearError, DeviceConnectionError, DeviceReadError, UserRecord

logger = logging.getLogger(__name__)

MAX_DEVICE_NAME_LENGTH = 24


class ZKDeviceClient:
    """One client per device; holds at most one open pyzk connection"""

    def __init__(self, timeout=10, password=0, force_udp=False, ommit_ping=True, lock_device=True):
        self.timeout = timeout
        self.password = password
        self.force_udp = force_udp
        self.ommit_ping = ommit_ping
        self.lock_device = lock_device
        self.conn = None

    @property
    def is_connected(self):
        return self.conn is not None

    def _require_conn(self):
        if self.conn is None:
            raise DeviceConnectionError("Not connected")
        return self.conn

    def connect(self, ip, port=4370):
        """Open a session; returns False instead of raising when the device refuses"""
        zk = ZK(ip, port=port, timeout=self.timeout, password=self.password,
                force_udp=self.force_udp, ommit_ping=self.ommit_ping)
        try:
            conn = zk.connect()
        except ZKError as e:
            logger.debug(f"pyzk connect to {ip}:{port} failed: {e}")
            return False
        if not conn:
            return False
        self.conn = conn

        if self.lock_device:
            # Keep people from punching while we read or write
            try:
                conn.disable_device()
            except ZKError as e:
                logger.warning(f"Could not disable device {ip}:{port}: {e}")
        return True

    def disconnect(self):
        conn, self.conn = self.conn, None
        if conn is None:
            return
        try:
            if self.lock_device:
                conn.enable_device()
        finally:
            conn.disconnect()

    def device_name(self):
        return self._require_conn().get_device_name()

    def serial_number(self):
        return self._require_conn().get_serialnumber()

    def get_time(self):
        device_time = self._require_conn().get_time()
        return str(device_time) if device_time is not None else ''

    def get_users(self):
        try:
            users = self._require_conn().get_users() or []
        except ZKError as e:
            raise DeviceReadError(f"Failed to read users: {e}")
        return [
            UserRecord(
                uid=u.uid,
                user_id=str(u.user_id),
                name=u.name,
                privilege=u.privilege,
                password=u.password or '',
                group_id=u.group_id or '',
                card=u.card or 0,
            )
            for u in users
        ]

    def get_attendance(self):
        try:
            attendance = self._require_conn().get_attendance() or []
        except ZKError as e:
            raise DeviceReadError(f"Failed to read attendance: {e}")
        return [
            AttendanceRecord(
                user_id=str(a.user_id),
                state=a.status,
                timestamp=a.timestamp,
                uid=a.uid,
                punch=a.punch,
            )
            for a in attendance
        ]

    def clear_attendance(self):
        try:
            return self._require_conn().clear_attendance() is not False
        except ZKError as e:
            raise ClearError(f"Failed to clear attendance: {e}")

    def clear_users(self):
        """Delete every enrolled user; pyzk has no single-call user table wipe"""
        conn = self._require_conn()
        try:
            users = conn.get_users() or []
            for user in users:
                conn.delete_user(uid=user.uid)
        except ZKError as e:
            raise ClearError(f"Failed to clear users: {e}")
        logger.info(f"Deleted {len(users)} users from device")
        return True

    def set_user(self, uid, employee_id, name, password='', privilege=const.USER_DEFAULT, enabled=True):
        """Write one user record; pyzk raises ZKErrorResponse on rejection"""
        conn = self._require_conn()
        if not enabled:
            # pyzk marks disabled users with the low privilege bit
            privilege = privilege | 1
        conn.set_user(
            uid=int(uid),
            name=(name or '')[:MAX_DEVICE_NAME_LENGTH],
            privilege=privilege,
            password=password or '',
            group_id='',
            user_id=str(employee_id),
        )
        return True


@contextmanager
def device_session(client, device):
    """Connect to a device for the duration of a with-block.

    Raises DeviceConnectionError before the body runs when the device cannot
    be reached (False return or exception from connect). Once connected the
    client is always disconnected on the way out; a failing disconnect is
    logged and never replaces the body's own exception.
    """
    try:
        connected = client.connect(device.ip, device.port)
    except Exception as e:
        raise DeviceConnectionError(f"Failed to connect to device: {device.label}: {e}")
    if not connected:
        raise DeviceConnectionError(f"Failed to connect to device: {device.label}")

    logger.info(f"Connected to device: {device.label}")
    try:
        yield client
    finally:
        try:
            client.disconnect()
            logger.debug(f"Disconnected from device: {device.label}")
        except Exception as e:
            logger.warning(f"Error disconnecting from device {device.label}: {e}")


def make_client_factory(config):
    """Return a zero-argument factory producing a fresh client per device"""
    def factory():
        return ZKDeviceClient(timeout=config.connect_timeout, force_udp=config.force_udp)
    return factory

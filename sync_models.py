#!/usr/bin/env python3
"""
Shared data model for the ZKTeco agent: device descriptors, records read from
terminals, per-device / per-employee outcomes and the Ok/Err result type used
at every device and uploader boundary.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_PORT = 4370


class ErrorKind(enum.Enum):
    CONFIGURATION = "configuration"
    INVALID_DEVICE = "invalid_device"
    CONNECTION = "connection"
    READ = "read"
    UPLOAD = "upload"
    CLEAR = "clear"
    WRITE = "write"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"


class AgentError(Exception):
    """Base class for agent errors"""
    kind = ErrorKind.UNEXPECTED


class ConfigurationError(AgentError):
    kind = ErrorKind.CONFIGURATION


class DeviceConnectionError(AgentError):
    kind = ErrorKind.CONNECTION


class DeviceReadError(AgentError):
    kind = ErrorKind.READ


class ClearError(AgentError):
    kind = ErrorKind.CLEAR


@dataclass(frozen=True)
class Ok:
    value: Any = None

    @property
    def ok(self):
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    detail: str = ""

    @property
    def ok(self):
        return False

    @classmethod
    def from_exception(cls, e, kind=ErrorKind.UNEXPECTED):
        """Agent errors carry their own kind; anything else gets the caller's"""
        if isinstance(e, AgentError):
            kind = e.kind
        return cls(kind, str(e) or e.__class__.__name__)


def safe_call(fn, kind, *args, **kwargs):
    """Run a device/uploader call and fold False returns and exceptions into Err"""
    try:
        value = fn(*args, **kwargs)
    except Exception as e:
        return Err.from_exception(e, kind)
    if value is False:
        return Err(kind, f"{getattr(fn, '__name__', 'call')} returned False")
    return Ok(value)


def _field(data, key):
    # 0 is a valid id; only an absent or null value counts as missing
    value = data.get(key)
    return '' if value is None else str(value).strip()


@dataclass(frozen=True)
class DeviceDescriptor:
    id: str
    name: str
    ip: str
    port: int = DEFAULT_DEVICE_PORT

    @property
    def label(self):
        return f"{self.name} ({self.ip}:{self.port})"

    def is_valid(self):
        return bool(self.id) and bool(self.name) and bool(self.ip)

    @classmethod
    def from_dict(cls, data):
        """Build a descriptor from a raw config entry; missing fields stay empty"""
        port = data.get('port')
        if port in (None, ''):
            port = DEFAULT_DEVICE_PORT
        else:
            try:
                port = int(port)
            except (TypeError, ValueError):
                logger.warning(f"Invalid port {port!r} for device {data.get('name')}, using {DEFAULT_DEVICE_PORT}")
                port = DEFAULT_DEVICE_PORT
        return cls(
            id=_field(data, 'id'),
            name=_field(data, 'name'),
            ip=_field(data, 'ip'),
            port=port,
        )


@dataclass(frozen=True)
class AttendanceRecord:
    user_id: str
    state: int
    timestamp: Any
    uid: Optional[int] = None
    punch: Optional[int] = None


@dataclass(frozen=True)
class UserRecord:
    uid: int
    user_id: str
    name: str
    privilege: int = 0
    password: str = ""
    group_id: str = ""
    card: int = 0


@dataclass(frozen=True)
class EmployeeRecord:
    """An employee as the HRM API returns it for a branch"""
    id: str
    name: str
    native_user_id: Optional[str] = None
    department: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        native = data.get('user_id')
        department = data.get('department')
        return cls(
            id=str(data.get('id') or ''),
            name=str(data.get('name') or ''),
            native_user_id=str(native) if native not in (None, '') else None,
            department=str(department) if department not in (None, '') else None,
        )


@dataclass
class SyncOutcome:
    device_id: str
    succeeded: bool
    attendance_count: int = 0
    user_count: int = 0
    error_detail: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    clear_attempted: bool = False
    cleared: bool = False

    @classmethod
    def failure(cls, device_id, err, attendance_count=0, user_count=0):
        return cls(
            device_id=device_id,
            succeeded=False,
            attendance_count=attendance_count,
            user_count=user_count,
            error_detail=err.detail,
            error_kind=err.kind,
        )


@dataclass
class SyncSummary:
    total_devices: int = 0
    success_count: int = 0
    failure_count: int = 0
    outcomes: List[SyncOutcome] = field(default_factory=list)

    @classmethod
    def from_outcomes(cls, outcomes):
        success_count = sum(1 for o in outcomes if o.succeeded)
        return cls(
            total_devices=len(outcomes),
            success_count=success_count,
            failure_count=len(outcomes) - success_count,
            outcomes=list(outcomes),
        )


@dataclass
class PushOutcome:
    employee_id: str
    assigned_uid: Optional[str]
    succeeded: bool
    error_detail: Optional[str] = None


@dataclass
class PushSummary:
    success_count: int = 0
    failed_count: int = 0
    total_count: int = 0
    outcomes: List[PushOutcome] = field(default_factory=list)
    connected: bool = True
    error_detail: Optional[str] = None

    @classmethod
    def from_outcomes(cls, outcomes, total_count=None):
        success_count = sum(1 for o in outcomes if o.succeeded)
        return cls(
            success_count=success_count,
            failed_count=len(outcomes) - success_count,
            total_count=len(outcomes) if total_count is None else total_count,
            outcomes=list(outcomes),
        )

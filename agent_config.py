#!/usr/bin/env python3
"""
Agent configuration

Loads config.json once per invocation into a typed AgentConfig and sets up the
dated, rotating log files shared by every script in this repo.

config.json example:
    {
        "devices": [
            {"id": "1", "name": "Main Gate", "ip": "192.168.1.201", "port": 4370}
        ],
        "api_endpoint": "https://hrm.example.org/api/attendance/sync",
        "api_key": "secret",
        "clear_after_sync": false,
        "debug": false
    }
"""

import datetime
import json
import logging
import os
import sys
import threading
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, List, Optional

from sync_models import ConfigurationError, DeviceDescriptor

current_dir = os.path.dirname(os.path.abspath(__file__))

DEFAULT_CONFIG_FILE = os.path.join(current_dir, 'config.json')
CONFIG_ENV_VAR = 'ZKTECO_AGENT_CONFIG'

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

REQUIRED_KEYS = ('devices', 'api_endpoint', 'api_key')
DATA_SOURCES = ('csv', 'excel', 'database')


@dataclass(frozen=True)
class AgentConfig:
    devices: List[DeviceDescriptor]
    api_endpoint: str
    api_key: str
    clear_after_sync: bool = False
    debug: bool = False
    hrm_base_url: str = ""
    data_source: str = "csv"
    source_file: Optional[str] = None
    logs_directory: str = "logs"
    pull_frequency: int = 5  # minutes
    connect_timeout: int = 10  # seconds
    request_timeout: int = 30  # seconds
    verify_ssl: bool = False
    force_udp: bool = False
    max_workers: int = 1
    clean_old_logs_days: int = 7
    log_file_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 5


@dataclass
class RunContext:
    """Everything one invocation needs, built once and passed down explicitly"""
    config: AgentConfig
    api_client: Any = None
    client_factory: Optional[Callable] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @property
    def cancelled(self):
        return self.cancel_event.is_set()


def resolve_config_path(path=None):
    return path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE


def derive_base_url(api_endpoint):
    """Cut the endpoint back to its '/api/' root: https://h/api/attendance -> https://h/api/"""
    marker = '/api/'
    index = api_endpoint.find(marker)
    if index >= 0:
        return api_endpoint[:index + len(marker)]
    return api_endpoint.rsplit('/', 1)[0] + '/'


def _as_bool(data, key, default=False):
    value = data.get(key, default)
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _as_int(data, key, default):
    value = data.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid integer for '{key}': {value!r}")


def parse_config(data):
    """Build an AgentConfig from an already decoded config mapping"""
    if not isinstance(data, dict):
        raise ConfigurationError("Config root must be a JSON object")

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        raise ConfigurationError(f"Missing required configuration values: {', '.join(missing)}")

    raw_devices = data['devices']
    if not isinstance(raw_devices, list):
        raise ConfigurationError("'devices' must be a list")

    # Entries are not validated here: an incomplete device fails on its own
    # during the run without stopping the others.
    devices = [DeviceDescriptor.from_dict(d if isinstance(d, dict) else {}) for d in raw_devices]

    api_endpoint = str(data['api_endpoint'] or '')
    if not api_endpoint:
        raise ConfigurationError("'api_endpoint' must not be empty")

    data_source = str(data.get('data_source', 'csv')).lower()
    if data_source not in DATA_SOURCES:
        raise ConfigurationError(f"Unsupported data source: {data_source}")

    hrm_base_url = data.get('hrm_base_url') or derive_base_url(api_endpoint)
    if not hrm_base_url.endswith('/'):
        hrm_base_url += '/'

    return AgentConfig(
        devices=devices,
        api_endpoint=api_endpoint,
        api_key=str(data['api_key'] or ''),
        clear_after_sync=_as_bool(data, 'clear_after_sync'),
        debug=_as_bool(data, 'debug'),
        hrm_base_url=hrm_base_url,
        data_source=data_source,
        source_file=data.get('source_file'),
        logs_directory=data.get('logs_directory') or os.path.join(current_dir, 'logs'),
        pull_frequency=max(_as_int(data, 'pull_frequency', 5), 1),
        connect_timeout=_as_int(data, 'connect_timeout', 10),
        request_timeout=_as_int(data, 'request_timeout', 30),
        verify_ssl=_as_bool(data, 'verify_ssl'),
        force_udp=_as_bool(data, 'force_udp'),
        max_workers=max(_as_int(data, 'max_workers', 1), 1),
        clean_old_logs_days=_as_int(data, 'clean_old_logs_days', 7),
        log_file_max_bytes=_as_int(data, 'log_file_max_bytes', 10 * 1024 * 1024),
        log_backup_count=_as_int(data, 'log_backup_count', 5),
    )


def load_config(path=None):
    """Load config.json; any problem here is fatal for the whole run"""
    config_file = resolve_config_path(path)
    if not os.path.exists(config_file):
        raise ConfigurationError(f"Config file not found at: {config_file}")

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in config file: {e}")

    return parse_config(data)


def setup_logging(name, config=None, log_dir=None, debug=None):
    """Log to logs/<name>_YYYY-MM-DD.log (rotating) and stdout"""
    if log_dir is None:
        log_dir = config.logs_directory if config else os.path.join(current_dir, 'logs')
    if debug is None:
        debug = config.debug if config else False
    max_bytes = config.log_file_max_bytes if config else 10 * 1024 * 1024
    backup_count = config.log_backup_count if config else 5

    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, f"{name}_{datetime.date.today().strftime('%Y-%m-%d')}.log")

    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8')
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    # Remove existing handlers to avoid duplicate logging on reconfigure
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    root.addHandler(file_handler)
    root.addHandler(console_handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    logging.getLogger('urllib3').setLevel(logging.WARNING)

    return log_file

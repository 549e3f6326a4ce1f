#!/usr/bin/env python3
"""
ZKTeco Agent

Connects to the ZKTeco devices listed in config.json, reads attendance and
user data, sends it to the HRM API and optionally clears attendance from the
device once the API has accepted it.

Usage:
    python3 zkteco_agent.py                 # one pass over all devices
    python3 zkteco_agent.py --loop          # keep polling every pull_frequency minutes
    python3 zkteco_agent.py -c other.json   # use another config file
"""

import argparse
import datetime
import logging
import signal
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed

import clean_old_logs
from agent_config import RunContext, load_config, setup_logging
from device_client import device_session, make_client_factory
from hrm_api_client import HRMAPIClient, is_accepted
from record_transformer import build_payload
from sync_models import (ConfigurationError, DeviceConnectionError, Err, ErrorKind, Ok,
                         SyncOutcome, SyncSummary, safe_call)

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def build_context(config, api_client=None, client_factory=None):
    return RunContext(
        config=config,
        api_client=api_client or HRMAPIClient.from_config(config),
        client_factory=client_factory or make_client_factory(config),
    )


class DeviceSyncWorker:
    """Runs connect -> read -> upload -> (clear) -> disconnect for one device.

    Every device-level problem ends up in the returned SyncOutcome; run()
    never raises.
    """

    def __init__(self, context):
        self.context = context
        self.config = context.config

    def run(self, device):
        if not device.is_valid():
            logger.error(f"Invalid device configuration: id={device.id!r}, name={device.name!r}, ip={device.ip!r}")
            return SyncOutcome.failure(device.id, Err(ErrorKind.INVALID_DEVICE, "Missing id, name or ip"))

        logger.info(f"Processing device: {device.label}")

        try:
            return self._run(device)
        except Exception as e:
            logger.error(f"Error processing device {device.name}: {str(e)}", exc_info=True)
            return SyncOutcome.failure(device.id, Err.from_exception(e))

    def _cancelled(self, device, step):
        if self.context.cancelled:
            logger.warning(f"Sync of {device.name} cancelled before {step}")
            return True
        return False

    def _run(self, device):
        if self._cancelled(device, "connect"):
            return SyncOutcome.failure(device.id, Err(ErrorKind.CANCELLED, "cancelled"))

        client = self.context.client_factory()

        read = self._read(client, device)
        if not read.ok:
            return SyncOutcome.failure(device.id, read)

        attendance, users, serial = read.value
        attendance_count = len(attendance)
        user_count = len(users)

        if attendance_count == 0 and user_count == 0:
            logger.info(f"No data to sync for device {device.name}")
            return SyncOutcome(device_id=device.id, succeeded=True)

        if self._cancelled(device, "upload"):
            return SyncOutcome.failure(device.id, Err(ErrorKind.CANCELLED, "cancelled"),
                                       attendance_count, user_count)

        upload = self._upload(attendance, users, device, serial)
        if not upload.ok:
            return SyncOutcome.failure(device.id, upload, attendance_count, user_count)

        outcome = SyncOutcome(
            device_id=device.id,
            succeeded=True,
            attendance_count=attendance_count,
            user_count=user_count,
        )

        if self.config.clear_after_sync and attendance_count > 0:
            if self._cancelled(device, "clear"):
                # Upload already landed; the records stay on the device for next time
                return outcome
            outcome.clear_attempted = True
            # A failed clear leaves succeeded untouched: the data reached the API
            outcome.cleared = self._clear(client, device).ok

        return outcome

    def _read_device_info(self, client, device):
        """Serial number for the payload; name and clock are only logged in debug"""
        serial = safe_call(client.serial_number, ErrorKind.READ)
        if not serial.ok:
            logger.warning(f"Could not retrieve device serial number: {serial.detail}")

        if self.config.debug:
            name = safe_call(client.device_name, ErrorKind.READ)
            device_time = safe_call(client.get_time, ErrorKind.READ)
            logger.debug(
                f"Device info: name={name.value if name.ok else '?'}, "
                f"serial_number={serial.value if serial.ok else '?'}, "
                f"device_time={device_time.value if device_time.ok else '?'}"
            )
        return (serial.value or None) if serial.ok else None

    def _read(self, client, device):
        """Read users and attendance inside one connection scope"""
        try:
            with device_session(client, device):
                if self._cancelled(device, "read"):
                    return Err(ErrorKind.CANCELLED, "cancelled")

                serial = self._read_device_info(client, device)

                users_result = safe_call(client.get_users, ErrorKind.READ)
                if users_result.ok:
                    users = list(users_result.value or [])
                    logger.info(f"Retrieved {len(users)} user records")
                else:
                    logger.warning(f"Could not retrieve user data: {users_result.detail}")
                    users = []

                if self._cancelled(device, "attendance read"):
                    return Err(ErrorKind.CANCELLED, "cancelled")

                attendance_result = safe_call(client.get_attendance, ErrorKind.READ)
                if not attendance_result.ok:
                    logger.error(f"Could not retrieve attendance data from {device.name}: {attendance_result.detail}")
                    return attendance_result

                attendance = list(attendance_result.value or [])
                logger.info(f"Retrieved {len(attendance)} attendance records")
                if attendance and self.config.debug:
                    logger.debug(f"Sample attendance record: {attendance[0]}")

                return Ok((attendance, users, serial))
        except DeviceConnectionError as e:
            logger.error(str(e))
            return Err.from_exception(e)

    def _upload(self, attendance, users, device, serial):
        payload = build_payload(attendance, users, device, serial)
        endpoint = self.config.api_endpoint
        logger.info(f"Sending data to API: {endpoint}")

        result = safe_call(self.context.api_client.post, ErrorKind.UPLOAD, endpoint, payload)
        if not result.ok:
            logger.error(f"API request exception: {result.detail}")
            return result

        response = result.value
        if is_accepted(response):
            body = response.json()
            logger.info(f"API request successful: {body.get('message', '')}")
            if body.get('summary'):
                logger.debug(f"Summary: {body['summary']}")
            return Ok(response)

        body = response.json()
        logger.error(f"API request failed with status code {response.status_code}: {response.message}")
        if isinstance(body, dict) and body.get('errors'):
            logger.debug(f"Errors: {body['errors']}")
        return Err(ErrorKind.UPLOAD, f"HTTP {response.status_code}: {response.message}")

    def _clear(self, client, device):
        logger.info(f"Clearing attendance data from device: {device.name}")
        try:
            with device_session(client, device):
                result = safe_call(client.clear_attendance, ErrorKind.CLEAR)
        except DeviceConnectionError as e:
            logger.error(f"Could not connect to device to clear attendance data: {e}")
            return Err(ErrorKind.CLEAR, str(e))

        if result.ok:
            logger.info("Successfully cleared attendance data")
        else:
            logger.error(f"Failed to clear attendance data: {result.detail}")
        return result


class SyncOrchestrator:
    """Runs DeviceSyncWorker over the configured devices and totals the results"""

    def __init__(self, context, worker=None):
        self.context = context
        self.config = context.config
        self.worker = worker or DeviceSyncWorker(context)

    def run(self, devices=None):
        devices = list(self.config.devices if devices is None else devices)
        start_time = time.time()

        logger.info("=" * 60)
        logger.info(f"ZKTeco Agent sync started: {len(devices)} devices")
        logger.info("=" * 60)

        if self.config.max_workers > 1 and len(devices) > 1:
            outcomes = self._run_parallel(devices)
        else:
            outcomes = [self._process(device) for device in devices]

        summary = SyncSummary.from_outcomes(outcomes)
        execution_time = time.time() - start_time

        logger.info(
            f"ZKTeco Agent sync completed: total_devices={summary.total_devices}, "
            f"success_devices={summary.success_count}, failed_devices={summary.failure_count}, "
            f"time={execution_time:.2f}s"
        )
        return summary

    def _process(self, device):
        if self.context.cancelled:
            logger.warning(f"✗ {device.name}: skipped, run cancelled")
            return SyncOutcome.failure(device.id, Err(ErrorKind.CANCELLED, "cancelled"))

        try:
            outcome = self.worker.run(device)
        except Exception as e:
            logger.error(f"✗ {device.name}: worker error: {str(e)}")
            return SyncOutcome.failure(device.id, Err.from_exception(e))

        if outcome.succeeded:
            logger.info(f"✓ {device.name}: {outcome.attendance_count} attendance, {outcome.user_count} users")
        else:
            logger.warning(f"✗ {device.name}: {outcome.error_detail}")
        return outcome

    def _run_parallel(self, devices):
        outcomes = [None] * len(devices)
        workers = min(self.config.max_workers, len(devices))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_index = {
                executor.submit(self._process, device): index
                for index, device in enumerate(devices)
            }
            for future in as_completed(future_to_index):
                index = future_to_index[future]
                try:
                    outcomes[index] = future.result()
                except Exception as e:
                    device = devices[index]
                    logger.error(f"✗ {device.name}: Thread execution error: {str(e)}")
                    outcomes[index] = SyncOutcome.failure(device.id, Err.from_exception(e))
        return outcomes


class AgentService:
    """Polling loop around SyncOrchestrator with graceful SIGINT/SIGTERM stop"""

    def __init__(self, context, orchestrator=None):
        self.context = context
        self.config = context.config
        self.orchestrator = orchestrator or SyncOrchestrator(context)
        self.start_time = datetime.datetime.now()
        self.cycle_count = 0
        self.error_count = 0
        self.last_error = None
        self.last_summary = None

    @property
    def running(self):
        return not self.context.cancelled

    def install_signal_handlers(self):
        signal.signal(signal.SIGTERM, self.signal_handler)
        signal.signal(signal.SIGINT, self.signal_handler)

    def signal_handler(self, signum, _frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.context.cancel_event.set()

    def execute_cycle(self):
        """Execute one sync pass plus the daily log cleanup"""
        self.cycle_count += 1
        logger.info(f"Cycle #{self.cycle_count}")

        summary = self.orchestrator.run()
        self.last_summary = summary

        if summary.failure_count:
            self.error_count += 1
            self.last_error = datetime.datetime.now()

        if clean_old_logs.should_run_cleanup(self.config):
            clean_old_logs.run_cleanup(self.config)

        return summary

    def run(self):
        """Main service loop"""
        logger.info(f"Service started v{VERSION}, freq={self.config.pull_frequency}min")

        while self.running:
            try:
                self.execute_cycle()

                if not self.running:
                    break

                sleep_seconds = self.config.pull_frequency * 60
                next_run = datetime.datetime.now() + datetime.timedelta(seconds=sleep_seconds)
                logger.info(f"Sleep {self.config.pull_frequency}min, next: {next_run.strftime('%H:%M:%S')}")

                self.context.cancel_event.wait(sleep_seconds)

            except Exception as e:
                self.error_count += 1
                self.last_error = datetime.datetime.now()
                logger.error(f"Cycle error: {e}", exc_info=True)
                self.context.cancel_event.wait(15)

        self.shutdown()

    def shutdown(self):
        runtime = datetime.datetime.now() - self.start_time
        logger.info(f"Shutdown: runtime={runtime}, cycles={self.cycle_count}, errors={self.error_count}")


def print_summary(summary):
    print("ZKTeco Agent script completed")
    print(f"Devices processed: {summary.total_devices}")
    print(f"Successful: {summary.success_count}")
    print(f"Failed: {summary.failure_count}")


def main(argv=None):
    parser = argparse.ArgumentParser(description='Sync attendance and user data from ZKTeco devices to the HRM API')
    parser.add_argument('-c', '--config', help='Path to config.json')
    parser.add_argument('--loop', action='store_true',
                        help='Keep running and sync every pull_frequency minutes')
    parser.add_argument('--version', action='store_true', help='Show version information')

    args = parser.parse_args(argv)

    if args.version:
        print(f"ZKTeco Agent v{VERSION}")
        return 0

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging('zkteco_agent', config)
    logger.info('ZKTeco Agent script started')

    context = build_context(config)

    if args.loop:
        service = AgentService(context)
        service.install_signal_handlers()
        service.run()
        return 0

    summary = SyncOrchestrator(context).run()
    if config.debug:
        print_summary(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())

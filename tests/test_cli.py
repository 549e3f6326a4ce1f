"""
Tests for the zkteco_agent and check_device_connection entry points.
"""

import json
import os
from unittest.mock import patch

import check_device_connection
import zkteco_agent
from conftest import FakeDeviceClient, FakeUploader, make_attendance, make_users
from sync_models import DeviceDescriptor


class TestAgentMain:

    def test_version(self, capsys):
        assert zkteco_agent.main(["--version"]) == 0
        assert "ZKTeco Agent v" in capsys.readouterr().out

    def test_missing_config_exits_1(self, tmp_path, capsys):
        assert zkteco_agent.main(["-c", str(tmp_path / "missing.json")]) == 1
        assert "Config file not found" in capsys.readouterr().err

    def test_one_pass_uploads_every_device(self, config_file, capsys):
        uploader = FakeUploader()
        clients = [FakeDeviceClient(attendance=make_attendance(2)), FakeDeviceClient(users=make_users(1))]

        with patch('zkteco_agent.HRMAPIClient') as api_cls, \
                patch('zkteco_agent.make_client_factory', return_value=lambda: clients.pop(0)):
            api_cls.from_config.return_value = uploader
            assert zkteco_agent.main(["-c", config_file(debug=True)]) == 0

        assert [p[1]['device_id'] for p in uploader.posts] == ["1", "2"]
        out = capsys.readouterr().out
        assert "Devices processed: 2" in out
        assert "Successful: 2" in out

    def test_failures_do_not_change_exit_code(self, config_file):
        with patch('zkteco_agent.HRMAPIClient'), \
                patch('zkteco_agent.make_client_factory',
                      return_value=lambda: FakeDeviceClient(connect_results=[False])):
            assert zkteco_agent.main(["-c", config_file()]) == 0


class TestCheckDeviceConnection:

    def test_reports_device(self, device, capsys):
        client = FakeDeviceClient(attendance=make_attendance(7), users=make_users(2))

        result = check_device_connection.check_device(client, device, dump=True)

        out = capsys.readouterr().out
        assert "Connection: SUCCESS" in out
        assert "Found 7 attendance records." in out
        assert result["connected"]
        assert result["serial_number"] == "SN-0001"
        assert len(result["users"]) == 2
        assert client.count('disconnect') == 1

    def test_unreachable_device(self, device, capsys):
        result = check_device_connection.check_device(FakeDeviceClient(connect_results=[False]), device)

        assert not result["connected"]
        assert "Connection: FAILED" in capsys.readouterr().out

    def test_attendance_table_shows_last_records(self):
        table = check_device_connection.format_attendance_table(make_attendance(8, user_id="9"), limit=5)

        assert len(table.splitlines()) == 7
        assert "08:07:00" in table
        assert "08:02:00" not in table

    def test_dump_file(self, tmp_path):
        path = check_device_connection.write_dump([{"device_id": "1"}], str(tmp_path / "logs"))

        assert os.path.basename(path).startswith("zkteco_data_")
        with open(path, encoding="utf-8") as f:
            assert json.load(f) == [{"device_id": "1"}]

    def test_unknown_device_id_exits_1(self, config_file, capsys):
        assert check_device_connection.main(["-c", config_file(), "--device", "99"]) == 1
        assert "Device '99' not found" in capsys.readouterr().out

    def test_main_filters_by_device_id(self, config_file):
        client = FakeDeviceClient()
        with patch('check_device_connection.make_client_factory', return_value=lambda: client):
            assert check_device_connection.main(["-c", config_file(), "--device", "2"]) == 0

        assert client.calls[0] == ('connect', '10.0.0.2', 4371)

    def test_api_flag_checks_hrm_api(self, config_file, capsys):
        with patch('check_device_connection.HRMAPIClient') as api_cls, \
                patch('check_device_connection.make_client_factory', return_value=lambda: FakeDeviceClient()):
            api_cls.from_config.return_value.test_connection.return_value = True
            assert check_device_connection.main(["-c", config_file(), "--api"]) == 0

        api_cls.from_config.return_value.test_connection.assert_called_once_with()
        assert "HRM API: REACHABLE" in capsys.readouterr().out

    def test_unreachable_api_exits_1(self, config_file, capsys):
        with patch('check_device_connection.HRMAPIClient') as api_cls, \
                patch('check_device_connection.make_client_factory', return_value=lambda: FakeDeviceClient()):
            api_cls.from_config.return_value.test_connection.return_value = False
            assert check_device_connection.main(["-c", config_file(), "--api"]) == 1

        assert "HRM API: UNREACHABLE" in capsys.readouterr().out

    def test_api_not_checked_without_flag(self, config_file):
        with patch('check_device_connection.HRMAPIClient') as api_cls, \
                patch('check_device_connection.make_client_factory', return_value=lambda: FakeDeviceClient()):
            assert check_device_connection.main(["-c", config_file()]) == 0

        api_cls.from_config.assert_not_called()


def test_descriptor_from_dict_defaults():
    assert DeviceDescriptor.from_dict({"id": 5, "name": "X", "ip": "1.1.1.1"}) == \
        DeviceDescriptor(id="5", name="X", ip="1.1.1.1", port=4370)

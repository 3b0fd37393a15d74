"""Tests for the server control script."""

import os

from brapi_importer.cli import server


class TestBuildCommand:
    def test_workers(self):
        cmd = server.build_command("0.0.0.0", 8000, 4, reload=False)
        assert cmd[1:4] == ["-m", "uvicorn", "brapi_importer.main:app"]
        assert cmd[-2:] == ["--workers", "4"]

    def test_reload_drops_workers(self):
        cmd = server.build_command("127.0.0.1", 8000, 4, reload=True)
        assert "--reload" in cmd
        assert "--workers" not in cmd

    def test_single_worker_has_no_flag(self):
        assert "--workers" not in server.build_command("127.0.0.1", 8000, 1, reload=False)


class TestPidFile:
    def test_no_pid_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(server, "PID_FILE", tmp_path / "server.pid")
        assert server.get_pid() is None

    def test_live_pid(self, tmp_path, monkeypatch):
        pid_file = tmp_path / "server.pid"
        pid_file.write_text(str(os.getpid()))
        monkeypatch.setattr(server, "PID_FILE", pid_file)
        assert server.get_pid() == os.getpid()

    def test_garbage_pid_file_is_removed(self, tmp_path, monkeypatch):
        pid_file = tmp_path / "server.pid"
        pid_file.write_text("not-a-pid")
        monkeypatch.setattr(server, "PID_FILE", pid_file)

        assert server.get_pid() is None
        assert not pid_file.exists()

    def test_stop_when_not_running(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr(server, "PID_FILE", tmp_path / "server.pid")
        assert server.stop_server() is False
        assert "not running" in capsys.readouterr().out


def test_main_without_command(monkeypatch):
    monkeypatch.setattr("sys.argv", ["brapi-importer-server"])
    assert server.main() == 1

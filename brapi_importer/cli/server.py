"""BrAPI importer server control script.

Usage:
    brapi-importer-server start [--host HOST] [--port PORT] [--workers N] [--reload] [--foreground]
    brapi-importer-server stop
    brapi-importer-server status
"""

import argparse
import json
import os
import signal
import subprocess
import sys
import time
import urllib.request
from pathlib import Path

from brapi_importer.config import settings

DATA_DIR = Path("data")
PID_FILE = DATA_DIR / "brapi-importer.pid"
LOG_FILE = DATA_DIR / "brapi-importer.log"
APP_PATH = "brapi_importer.main:app"


def get_pid() -> int | None:
    """Get the PID of the running server, if any."""
    if not PID_FILE.exists():
        return None
    try:
        pid = int(PID_FILE.read_text().strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        # Stale PID file
        PID_FILE.unlink(missing_ok=True)
        return None


def build_command(host: str, port: int, workers: int, reload: bool) -> list[str]:
    cmd = [
        sys.executable, "-m", "uvicorn",
        APP_PATH,
        "--host", host,
        "--port", str(port),
    ]
    # uvicorn rejects --workers together with --reload
    if reload:
        cmd.append("--reload")
    elif workers > 1:
        cmd.extend(["--workers", str(workers)])
    return cmd


def start_server(host: str, port: int, workers: int = 1,
                 reload: bool = False, foreground: bool = False) -> bool:
    """Start the server.

    Returns:
        True if the server started.
    """
    pid = get_pid()
    if pid:
        print(f"Server is already running (PID: {pid})")
        return False

    DATA_DIR.mkdir(parents=True, exist_ok=True)
    cmd = build_command(host, port, workers, reload)
    print(f"Starting BrAPI importer on http://{host}:{port}")

    if foreground:
        print("Press Ctrl+C to stop the server")
        try:
            subprocess.run(cmd)
        except KeyboardInterrupt:
            print("\nServer stopped")
        return True

    with open(LOG_FILE, "w") as log:
        process = subprocess.Popen(
            cmd,
            stdout=log,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )

    time.sleep(1)
    if process.poll() is None:
        PID_FILE.write_text(str(process.pid))
        print(f"Server started with PID: {process.pid}")
        print(f"Logs available at: {LOG_FILE}")
        return True
    print("Failed to start server. Check logs for details.")
    return False


def stop_server() -> bool:
    """Stop the server, escalating to SIGKILL if it does not exit."""
    pid = get_pid()
    if not pid:
        print("Server is not running")
        return False

    print(f"Stopping server (PID: {pid})...")
    try:
        os.kill(pid, signal.SIGTERM)
        for _ in range(10):
            time.sleep(0.5)
            try:
                os.kill(pid, 0)
            except ProcessLookupError:
                break
        else:
            print("Server didn't stop gracefully, forcing...")
            os.kill(pid, signal.SIGKILL)
    except ProcessLookupError:
        print("Server was not running")
        return False
    finally:
        PID_FILE.unlink(missing_ok=True)

    print("Server stopped")
    return True


def server_status(port: int) -> None:
    pid = get_pid()
    if not pid:
        print("BrAPI importer is not running")
        return

    print(f"BrAPI importer is running (PID: {pid})")
    try:
        with urllib.request.urlopen(f"http://localhost:{port}/health", timeout=2) as response:
            data = json.loads(response.read().decode())
        print(f"  Status: {data.get('status', 'unknown')}")
        print(f"  Version: {data.get('version', 'unknown')}")
        print(f"  BrAPI backend: {data.get('brapi_backend', 'unknown')}")
    except OSError:
        print("  (Could not fetch health status)")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="BrAPI importer server control script")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    start_parser = subparsers.add_parser("start", help="Start the server")
    start_parser.add_argument("--host", default=settings.host, help=f"Host to bind to (default: {settings.host})")
    start_parser.add_argument("--port", "-p", type=int, default=settings.port, help=f"Port to bind to (default: {settings.port})")
    start_parser.add_argument("--workers", "-w", type=int, default=settings.workers, help="Number of worker processes")
    start_parser.add_argument("--reload", "-r", action="store_true", help="Enable auto-reload for development")
    start_parser.add_argument("--foreground", "-f", action="store_true", help="Run in foreground (blocking)")

    subparsers.add_parser("stop", help="Stop the server")

    status_parser = subparsers.add_parser("status", help="Check server status")
    status_parser.add_argument("--port", "-p", type=int, default=settings.port)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command == "start":
            ok = start_server(args.host, args.port, args.workers, args.reload, args.foreground)
            return 0 if ok else 1
        if args.command == "stop":
            return 0 if stop_server() else 1
        if args.command == "status":
            server_status(args.port)
            return 0
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Invoke tasks for BrAPI importer management."""

import sys
from pathlib import Path

from invoke import task
from invoke.context import Context

LOG_FILE = Path("data/brapi-importer.log")


@task
def start(ctx: Context, host: str = "0.0.0.0", port: int = 8000, workers: int = 1, reload: bool = False) -> None:
    """Start the importer in the foreground.

    Args:
        ctx: Invoke context
        host: Host to bind to (default: 0.0.0.0)
        port: Port to bind to (default: 8000)
        workers: Number of uvicorn workers (ignored with reload)
        reload: Enable auto-reload for development
    """
    cmd = f"uv run brapi-importer-server start --host {host} --port {port} --workers {workers} --foreground"
    if reload:
        cmd += " --reload"

    try:
        ctx.run(cmd, pty=True)
    except KeyboardInterrupt:
        print("\nServer stopped")
        sys.exit(0)


@task(name="start-background")
def start_background(ctx: Context, host: str = "0.0.0.0", port: int = 8000) -> None:
    """Start the importer in the background."""
    ctx.run(f"uv run brapi-importer-server start --host {host} --port {port}")


@task
def stop(ctx: Context) -> None:
    """Stop the background importer."""
    ctx.run("uv run brapi-importer-server stop")


@task
def status(ctx: Context) -> None:
    ctx.run("uv run brapi-importer-server status")


@task
def logs(ctx: Context, follow: bool = False, lines: int = 50) -> None:
    """View the server logs.

    Args:
        ctx: Invoke context
        follow: Follow log output (like tail -f)
        lines: Number of lines to show (default: 50)
    """
    if not LOG_FILE.exists():
        print(f"No log file at {LOG_FILE}")
        return
    if follow:
        ctx.run(f"tail -f {LOG_FILE}", pty=True)
    else:
        ctx.run(f"tail -n {lines} {LOG_FILE}")


@task
def test(ctx: Context, verbose: bool = False, coverage: bool = False, engine_only: bool = False) -> None:
    """Run the test suite.

    Args:
        ctx: Invoke context
        verbose: Enable verbose output
        coverage: Run with coverage report
        engine_only: Skip the API tests that need MongoDB
    """
    cmd = "uv run pytest"
    if verbose:
        cmd += " -v"
    if coverage:
        cmd += " --cov=brapi_importer --cov-report=term-missing"
    if engine_only:
        cmd += " --ignore=tests/test_import_api.py"
    ctx.run(cmd, pty=True)


@task
def lint(ctx: Context) -> None:
    """Run ruff over the package and tests."""
    ctx.run("uv run ruff check brapi_importer tests", pty=True)


@task
def format(ctx: Context, check: bool = False) -> None:
    """Format the code with ruff.

    Args:
        ctx: Invoke context
        check: Only report files that would change
    """
    ctx.run(f"uv run ruff format {'--check ' if check else ''}brapi_importer tests", pty=True)


@task
def clean(ctx: Context) -> None:
    """Clean up caches and build artifacts."""
    for pattern in ["__pycache__", "*.pyc", "*.pyo", ".pytest_cache", ".ruff_cache"]:
        ctx.run(f"find . -name '{pattern}' -exec rm -rf {{}} + 2>/dev/null || true", warn=True)
    for path in ["build", "dist", "*.egg-info", ".eggs"]:
        ctx.run(f"rm -rf {path} 2>/dev/null || true", warn=True)

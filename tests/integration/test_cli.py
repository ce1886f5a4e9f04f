"""Integration tests for the command line interface."""

import argparse
import subprocess
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import pytest_asyncio
import yaml
from rich.console import Console

from cli import HeraldCLI, build_parser, config_show
from src.config import Config
from src.core.entities import Platform
from src.main import HeraldApp

CLI_PATH = Path(__file__).parent.parent.parent / "cli.py"


def run_cli_command(args, cwd):
    """Run the CLI in a subprocess and return (returncode, stdout, stderr)."""
    result = subprocess.run(
        [sys.executable, str(CLI_PATH), *args],
        cwd=cwd,
        text=True,
        capture_output=True,
        timeout=60,
    )
    return result.returncode, result.stdout, result.stderr


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "environment": "test",
        "email": {"from_address": "noreply@example.com", "smtp": {"host": "smtp.example.com"},
                  "sendgrid": {"api_key": "SG.abcdefghijkl"}},
        "push": {"fcm": {"enabled": False}},
    }), encoding="utf-8")
    return str(path)


@pytest_asyncio.fixture
async def cli():
    app = HeraldApp(config=Config(
        email={"from_address": "noreply@example.com", "smtp": {"host": "smtp.example.com"}},
        push={"fcm": {"enabled": False}},
        retry={"email": {"max_attempts": 1}},
    ))
    await app.initialize()
    await app.start()
    herald_cli = HeraldCLI()
    herald_cli.console = Console(record=True, width=200)
    herald_cli.app = app
    yield herald_cli
    await app.shutdown()


def email_args(**overrides):
    args = dict(to=["alice@example.com"], cc=None, bcc=None, subject="Hello", body="Hi Alice",
                html=False, from_address=None, priority="normal", event_id=None, service_id=None,
                async_mode=False)
    args.update(overrides)
    return SimpleNamespace(**args)


@pytest.mark.integration
class TestCLIParser:
    """Test argument parsing."""

    def test_email_send_arguments(self):
        args = build_parser().parse_args([
            "email", "send", "--to", "a@example.com", "--to", "b@example.com",
            "--subject", "Hi", "--body", "Hello", "--priority", "high", "--async",
        ])

        assert args.command == "email"
        assert args.to == ["a@example.com", "b@example.com"]
        assert args.priority == "high"
        assert args.async_mode is True

    def test_push_send_requires_one_target(self):
        parser = build_parser()

        with pytest.raises(SystemExit):
            parser.parse_args(["push", "send", "--title", "t", "--body", "b"])
        with pytest.raises(SystemExit):
            parser.parse_args(["push", "send", "--token", "x", "--user-id", "u", "--title", "t", "--body", "b"])

    def test_ratelimit_reset_arguments(self):
        args = build_parser().parse_args(["ratelimit", "reset", "--service-id", "billing", "--global"])

        assert args.service_id == "billing"
        assert args.reset_global is True

    def test_parse_data(self):
        assert HeraldCLI._parse_data(["order_id=1001", "kind = shipped"]) == {"order_id": "1001", "kind": " shipped"}
        with pytest.raises(argparse.ArgumentTypeError):
            HeraldCLI._parse_data(["no-separator"])


@pytest.mark.integration
class TestCLICommands:
    """Test commands against an in-process application."""

    def test_config_show_masks_secrets(self, config_path, tmp_path):
        console = Console(record=True, width=200)

        assert config_show(console, config_path, str(tmp_path / "missing.env")) is True

        output = console.export_text()
        assert "smtp.example.com" in output
        assert "***ijkl" in output
        assert "SG.abcdefghijkl" not in output

    def test_config_show_reports_errors(self, tmp_path):
        bad = tmp_path / "config.yaml"
        bad.write_text("cache: {type: memcached}", encoding="utf-8")
        console = Console(record=True, width=200)

        assert config_show(console, str(bad), str(tmp_path / "missing.env")) is False
        assert "Unknown cache type" in console.export_text()

    @pytest.mark.asyncio
    async def test_email_send(self, cli):
        with patch("smtplib.SMTP"):
            assert await cli.email_send(email_args()) is True

        assert "sent" in cli.console.export_text()

    @pytest.mark.asyncio
    async def test_email_send_failure(self, cli):
        with patch("smtplib.SMTP", side_effect=ConnectionRefusedError("refused")):
            assert await cli.email_send(email_args(async_mode=True)) is False

        assert "failed" in cli.console.export_text()

    @pytest.mark.asyncio
    async def test_email_validation_error(self, cli):
        assert await cli.email_send(email_args(to=["not-an-email"])) is False

        assert "Email not sent" in cli.console.export_text()

    @pytest.mark.asyncio
    async def test_push_register_and_providers_status(self, cli):
        assert await cli.push_register("user-42", "fcm-token-abc123", Platform.ANDROID.value) is True
        assert await cli.providers_status() is True

        output = cli.console.export_text()
        assert "Registered android device" in output
        assert "smtpProvider" in output

    @pytest.mark.asyncio
    async def test_ratelimit_without_redis(self, cli):
        assert await cli.ratelimit_status("billing") is True
        assert await cli.ratelimit_reset("billing", False) is False

        assert "Rate limiting is disabled" in cli.console.export_text()

    @pytest.mark.asyncio
    async def test_health_check(self, cli):
        assert await cli.health_check() is True

        assert "All services are healthy" in cli.console.export_text()


@pytest.mark.integration
class TestCLISubprocess:
    """Run the CLI script end to end."""

    def test_help(self, tmp_path):
        returncode, stdout, stderr = run_cli_command(["--help"], cwd=tmp_path)

        assert returncode == 0, f"Help command failed: {stderr}"
        assert "usage:" in stdout.lower()

    def test_config_show(self, config_path, tmp_path):
        returncode, stdout, stderr = run_cli_command(["--config", config_path, "config", "show"], cwd=tmp_path)

        assert returncode == 0, f"Config show failed: {stderr}"
        assert "Configuration Summary" in stdout

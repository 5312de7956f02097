"""Tests for the CLI."""

from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from formrelay.cli.main import app

runner = CliRunner()


class TestTokenCommand:
    """Tests for the token command."""

    def test_token_through_relay(self):
        probe = AsyncMock(
            return_value={"success": True, "data": {"scope": "api@example.com", "expires_in": 3599}}
        )
        with patch("formrelay.cli.main.RelayClient.test_token", probe):
            result = runner.invoke(app, ["token", "--url", "http://relay.local"])

        assert result.exit_code == 0
        assert "Relay obtained a token" in result.output
        probe.assert_awaited_once()

    def test_token_through_relay_failure(self):
        probe = AsyncMock(return_value={"success": False, "error": "Bad client credentials"})
        with patch("formrelay.cli.main.RelayClient.test_token", probe):
            result = runner.invoke(app, ["token", "--url", "http://relay.local"])

        assert result.exit_code == 1
        assert "Bad client credentials" in result.output

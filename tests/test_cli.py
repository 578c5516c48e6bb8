"""
Tests for the inapppay command line.
"""
import pytest
from click.testing import CliRunner

from conftest import success_body
from inapppay import cli as cli_module
from inapppay.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def cli_env(monkeypatch, base_url, project_name, user_id):
    """Point the CLI at the mocked backend with instant retries."""
    monkeypatch.setattr(cli_module, "configure_logging", lambda **kwargs: None)
    monkeypatch.setenv("INAPPPAY_BASE_URL", base_url)
    monkeypatch.setenv("INAPPPAY_PROJECT_NAME", project_name)
    monkeypatch.setenv("INAPPPAY_USER_ID", user_id)
    monkeypatch.setenv("INAPPPAY_BASE_DELAY", "0")
    monkeypatch.setenv("INAPPPAY_MAX_DELAY", "0")
    monkeypatch.setenv("INAPPPAY_JITTER", "0")
    monkeypatch.delenv("INAPPPAY_API_KEY", raising=False)
    monkeypatch.delenv("INAPPPAY_KEY_STORE_DSN", raising=False)


class TestConfigCommand:
    def test_shows_configuration(self, runner, base_url):
        """Should print the effective settings."""
        result = runner.invoke(cli, ["config"], obj={})

        assert result.exit_code == 0
        assert base_url in result.output
        assert "demo-game" in result.output
        assert "in-memory" in result.output

    def test_masks_api_key(self, runner, monkeypatch):
        """Should never print the full API key."""
        monkeypatch.setenv("INAPPPAY_API_KEY", "sk_live_1234567890abcdef")

        result = runner.invoke(cli, ["config"], obj={})

        assert result.exit_code == 0
        assert "sk_live_1234567890abcdef" not in result.output
        assert "sk_l...cdef" in result.output

    def test_options_override_environment(self, runner):
        result = runner.invoke(cli, ["--project", "other-game", "config"], obj={})

        assert "other-game" in result.output


class TestBuyCommand:
    """Tests for purchasing from the command line."""

    def test_buy_success(self, runner, httpx_mock, purchase_url):
        """Should print the receipt and exit 0."""
        httpx_mock.add_response(url=purchase_url, status_code=503)
        httpx_mock.add_response(url=purchase_url, json=success_body("R777"))

        result = runner.invoke(cli, ["buy", "sku_1", "--amount", "4.99"], obj={})

        assert result.exit_code == 0, result.output
        assert "Purchase completed" in result.output
        assert "R777" in result.output
        assert len(httpx_mock.requests) == 2

    def test_buy_with_card(self, runner, httpx_mock, purchase_url):
        httpx_mock.add_response(url=purchase_url, json=success_body())

        result = runner.invoke(
            cli,
            [
                "buy", "sku_1", "--amount", "4.99",
                "--card-number", "4111 1111 1111 1111",
                "--expiry", "12/99", "--cvv", "123", "--name", "Ada Lovelace",
            ],
            obj={},
        )

        assert result.exit_code == 0, result.output
        assert httpx_mock.requests[0].body["cardData"]["cardNumber"] == "4111111111111111"

    def test_buy_declined(self, runner, httpx_mock, purchase_url):
        """Should exit 1 and show the decline reason."""
        httpx_mock.add_response(url=purchase_url, status_code=402, json={"errorCode": "insufficient_funds"})

        result = runner.invoke(cli, ["buy", "sku_1", "--amount", "4.99"], obj={})

        assert result.exit_code == 1
        assert "declined" in result.output
        assert "insufficient_funds" in result.output

    def test_buy_invalid_amount(self, runner, httpx_mock):
        """Should reject a bad amount without calling the backend."""
        result = runner.invoke(cli, ["buy", "sku_1", "--amount", "-1"], obj={})

        assert result.exit_code == 1
        assert "INVALID_REQUEST" in result.output
        assert httpx_mock.requests == []

    def test_missing_project(self, runner, monkeypatch, httpx_mock):
        monkeypatch.setenv("INAPPPAY_PROJECT_NAME", "")

        result = runner.invoke(cli, ["buy", "sku_1", "--amount", "4.99"], obj={})

        assert result.exit_code == 1
        assert "Project name is required" in result.output


class TestStatusCommands:
    def test_purchased(self, runner, httpx_mock, base_url):
        httpx_mock.add_response(
            url=f"{base_url}/checkUserPurchased",
            json={"success": True, "data": {"purchased": True}},
        )

        result = runner.invoke(cli, ["purchased", "sku_1"], obj={})

        assert result.exit_code == 0
        assert "sku_1 is purchased" in result.output

    def test_subscriptions_empty(self, runner, httpx_mock, base_url):
        httpx_mock.add_response(
            url=f"{base_url}/getSubscriptions",
            json={"success": True, "data": {"subscriptions": []}},
        )

        result = runner.invoke(cli, ["subscriptions"], obj={})

        assert result.exit_code == 0
        assert "No subscriptions found" in result.output

    def test_validate_not_found(self, runner, httpx_mock, base_url):
        """Should report backend errors with their code."""
        httpx_mock.add_response(
            url=f"{base_url}/validateItemForPurchase",
            status_code=404,
            json={"success": False, "error": "Item not found", "errorCode": "ITEM_NOT_FOUND"},
        )

        result = runner.invoke(cli, ["validate", "sku_missing"], obj={})

        assert result.exit_code == 1
        assert "ITEM_NOT_FOUND" in result.output

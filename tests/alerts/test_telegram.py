"""Tests for Telegram whale alerts."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import respx

from whalewatch.alerts.telegram import NoopAlertSink, TelegramAlertSink, format_delta_alert
from whalewatch.core.types import BalanceChange, DeltaResult, HolderRecord, TransferRecord
from whalewatch.data.normalize import ZERO_ADDRESS


def change(prev: float, cur: float) -> BalanceChange:
    pct = (cur - prev) / prev * 100 if prev > 0 else 0.0
    return BalanceChange(previous_balance=prev, current_balance=cur, change_percent=pct)


class TestFormatDeltaAlert:
    """Test alert message rendering."""

    def test_nothing_to_report(self, entity):
        """Test an empty or insignificant delta produces no message."""
        assert format_delta_alert(entity, DeltaResult(), 10.0) is None

        small = DeltaResult(changed={"0xa": change(100, 101)})
        assert format_delta_alert(entity, small, 10.0) is None

    def test_entered_exited_and_moves(self, entity):
        """Test every section is rendered with shortened addresses."""
        whale = "0x1111111111111111111111111111111111111111"
        delta = DeltaResult(
            entered=frozenset({whale}),
            exited=frozenset({"0x2222222222222222222222222222222222222222"}),
            changed={
                "0x3333333333333333333333333333333333333333": change(100, 250),
                "0x4444444444444444444444444444444444444444": change(100, 102),
            },
        )

        message = format_delta_alert(entity, delta, 10.0)

        assert message.startswith("🐋 <b>Whale activity</b>")
        assert str(entity) in message
        assert "New holders (1)" in message
        assert "0x1111...1111" in message
        assert "Exited holders (1)" in message
        assert "Balance moves ≥ 10% (1)" in message
        assert "100.00 → 250.00 (+150.00%)" in message
        assert "0x4444" not in message

    def test_threshold_zero_reports_all_changes(self, entity):
        """Test a zero threshold reports every change."""
        delta = DeltaResult(changed={"0xa": change(100, 101), "0xb": change(0, 5)})

        message = format_delta_alert(entity, delta, 0.0)

        assert "Balance moves ≥ 0% (2)" in message

    def test_whales_and_supply_events(self, entity):
        """Test whale cohort and mint or burn context lines."""
        whale = HolderRecord(
            address="0x5555555555555555555555555555555555555555",
            balance=1_250_000,
            percent_of_supply=12.5,
        )
        transfers = [
            TransferRecord(
                tx_hash="0x1", from_address="0xa", to_address=ZERO_ADDRESS, amount=40, kind="burn"
            ),
            TransferRecord(tx_hash="0x2", from_address="0xa", to_address="0xb", amount=99),
            TransferRecord(
                tx_hash="0x3", from_address=ZERO_ADDRESS, to_address="0xc", amount=7, kind="mint"
            ),
        ]

        message = format_delta_alert(
            entity,
            DeltaResult(entered=frozenset({"0xc"})),
            10.0,
            whales=[whale],
            transfers=transfers,
        )

        assert "Top holders (1)" in message
        assert "0x5555...5555</code> 1,250,000.00 (12.50%)" in message
        assert "Mints and burns (2)" in message
        assert "🔥 burn 40.00 ← <code>0xa</code>" in message
        assert "🪙 mint 7.00 → <code>0xc</code>" in message
        assert "99.00" not in message

    def test_context_alone_is_not_alertable(self, entity):
        """Test whales and transfers never trigger an alert on their own."""
        whale = HolderRecord(address="0xa", balance=1, percent_of_supply=1)

        assert format_delta_alert(entity, DeltaResult(), 10.0, whales=[whale]) is None


class TestTelegramAlertSink:
    """Test Telegram alert sink functionality."""

    @pytest.fixture
    def alert_sink(self):
        """Sink with a mocked HTTP client and two admin chats."""
        return TelegramAlertSink(
            bot_token="whale_token",
            admin_user_ids=[12345, 67890],
            session=AsyncMock(spec=httpx.AsyncClient),
        )

    @pytest.mark.asyncio
    async def test_initialization(self, alert_sink):
        """Test the sink keeps its credentials and API base."""
        assert alert_sink.bot_token == "whale_token"
        assert alert_sink.admin_user_ids == [12345, 67890]
        assert alert_sink.base_url == "https://api.telegram.org/botwhale_token"

    @pytest.mark.asyncio
    async def test_push_message_success(self, alert_sink):
        """Test an alert is sent to each admin chat in order."""
        mock_response = AsyncMock()
        mock_response.json = MagicMock(
            return_value={"ok": True, "result": {"message_id": 123}}
        )
        mock_response.raise_for_status = MagicMock()
        alert_sink.session.post.return_value = mock_response

        await alert_sink.push("Whale moved")

        assert alert_sink.session.post.call_count == 2
        first_call = alert_sink.session.post.call_args_list[0]
        assert (
            first_call[0][0] == "https://api.telegram.org/botwhale_token/sendMessage"
        )
        assert first_call[1]["json"]["chat_id"] == 12345
        assert first_call[1]["json"]["text"] == "Whale moved"
        assert first_call[1]["json"]["parse_mode"] == "HTML"
        assert alert_sink.session.post.call_args_list[1][1]["json"]["chat_id"] == 67890

    @pytest.mark.asyncio
    async def test_push_message_no_admins(self):
        """Test nothing is sent without admin chats."""
        alert_sink = TelegramAlertSink(
            bot_token="watch_token",
            admin_user_ids=[],
            session=AsyncMock(spec=httpx.AsyncClient),
        )

        await alert_sink.push("Test message")

        alert_sink.session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_push_continues_after_api_error(self, alert_sink):
        """Test a Telegram API error for one admin does not stop the others."""
        bad = AsyncMock()
        bad.json = MagicMock(return_value={"ok": False, "description": "chat not found"})
        bad.raise_for_status = MagicMock()
        good = AsyncMock()
        good.json = MagicMock(return_value={"ok": True})
        good.raise_for_status = MagicMock()
        alert_sink.session.post.side_effect = [bad, good]

        await alert_sink.push("Whale moved")

        assert alert_sink.session.post.call_count == 2

    @pytest.mark.asyncio
    async def test_close(self, alert_sink):
        """Test closing releases the HTTP session."""
        await alert_sink.close()

        alert_sink.session.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_noop_sink(self):
        """Test the noop sink accepts messages."""
        await NoopAlertSink().push("ignored")


class TestTelegramApi:
    """Tests against a respx-mocked Telegram API."""

    @pytest.mark.asyncio
    async def test_telegram_api_integration(self):
        """Test the sendMessage payload against a mocked Telegram API."""
        with respx.mock as respx_mock:
            respx_mock.post("https://api.telegram.org/botwatch_token/sendMessage").mock(
                return_value=httpx.Response(
                    200, json={"ok": True, "result": {"message_id": 123}}
                )
            )

            alert_sink = TelegramAlertSink("watch_token", [12345])

            await alert_sink.push("🐋 whale alert")

            assert respx_mock.calls.call_count == 1
            request_data = json.loads(respx_mock.calls[0].request.content)
            assert request_data["chat_id"] == 12345
            assert request_data["text"] == "🐋 whale alert"

    @pytest.mark.asyncio
    async def test_telegram_http_error_is_logged(self):
        """Test HTTP errors from Telegram do not propagate."""
        with respx.mock as respx_mock:
            respx_mock.post("https://api.telegram.org/botwatch_token/sendMessage").mock(
                return_value=httpx.Response(500)
            )

            alert_sink = TelegramAlertSink("watch_token", [12345])

            await alert_sink.push("🐋 whale alert")

            assert respx_mock.calls.call_count == 1

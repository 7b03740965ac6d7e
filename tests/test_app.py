"""Tests for gardenit.bot.app — Telegram wiring of the tick job."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from gardenit.bot.app import _setup_tick, _tick_job, build_app, cmd_start


class TestTickJob:
    @pytest.mark.asyncio
    async def test_runs_engine_tick(self):
        engine = MagicMock()
        engine.run_tick = AsyncMock()
        context = MagicMock()
        context.bot_data = {"engine": engine}

        await _tick_job(context)

        engine.run_tick.assert_awaited_once()
        now = engine.run_tick.call_args.args[0]
        assert now.tzinfo is not None

    def test_setup_registers_repeating_job(self):
        app = MagicMock()
        _setup_tick(app)

        app.job_queue.run_repeating.assert_called_once()
        kwargs = app.job_queue.run_repeating.call_args.kwargs
        assert kwargs["interval"] == 60
        assert 1 <= kwargs["first"] <= 60
        assert kwargs["name"] == "notification_tick"


class TestBuildApp:
    def test_wires_given_engine(self):
        engine = MagicMock()
        with patch("gardenit.bot.app._setup_tick") as mock_setup:
            app = build_app(engine=engine)

        assert app.bot_data["engine"] is engine
        mock_setup.assert_called_once_with(app)


class TestStartCommand:
    @pytest.mark.asyncio
    async def test_replies_with_chat_id(self):
        update = MagicMock()
        update.effective_chat.id = 4242
        update.message.reply_text = AsyncMock()

        await cmd_start(update, MagicMock())

        text = update.message.reply_text.call_args.args[0]
        assert "4242" in text

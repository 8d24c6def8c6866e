"""Tests for engine options and session transactions."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from docrag.config import Settings
from docrag.storage.database import engine_options, get_session


def session_factory(session):
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=session)
    context.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=context)


class TestEngineOptions:
    """Tests for engine_options."""

    def test_pool_settings_applied(self):
        options = engine_options(Settings(db_pool_size=2, db_max_overflow=3, db_pool_pre_ping=False))

        assert options["pool_size"] == 2
        assert options["max_overflow"] == 3
        assert options["pool_pre_ping"] is False
        assert options["echo"] is False

    def test_debug_logging_echoes_sql(self):
        assert engine_options(Settings(log_level="debug"))["echo"] is True


class TestGetSession:
    """Tests for get_session."""

    @pytest.mark.asyncio
    async def test_commits_on_clean_exit(self):
        session = MagicMock(commit=AsyncMock(), rollback=AsyncMock())

        with patch("docrag.storage.database.async_session_factory", session_factory(session)):
            async with get_session() as opened:
                assert opened is session

        session.commit.assert_awaited_once()
        session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rolls_back_and_reraises(self):
        session = MagicMock(commit=AsyncMock(), rollback=AsyncMock())

        with patch("docrag.storage.database.async_session_factory", session_factory(session)):
            with pytest.raises(ValueError):
                async with get_session():
                    raise ValueError("bad row")

        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

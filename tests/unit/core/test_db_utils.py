import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy.exc import IntegrityError, OperationalError

from core.exceptions import PermanentError, TransientError
from core.helpers.db_utils import is_transient_db_error, retry_on_db_lock, translate_db_errors


def _op_error(text):
    return OperationalError("SELECT 1", {}, Exception(text))


def _integrity_error(text):
    return IntegrityError("INSERT", {}, Exception(text))


class TestTransientDetection:
    def test_locked_is_transient(self):
        assert is_transient_db_error(_op_error("database is locked"))

    def test_syntax_error_is_not(self):
        assert not is_transient_db_error(_op_error("near \"SELEC\": syntax error"))

    def test_other_exceptions(self):
        assert not is_transient_db_error(ValueError("locked"))

    def test_stale_foreign_key_is_transient(self):
        assert is_transient_db_error(_integrity_error("FOREIGN KEY constraint failed"))

    def test_unique_violation_is_not(self):
        assert not is_transient_db_error(_integrity_error("UNIQUE constraint failed: chats.id"))


@pytest.mark.asyncio
class TestTranslateDbErrors:
    async def test_lock_becomes_transient(self):
        @translate_db_errors
        async def op():
            raise _op_error("database is locked")

        with pytest.raises(TransientError) as exc:
            await op()
        assert "locked" in exc.value.context["error"]

    async def test_other_operational_errors_pass_through(self):
        @translate_db_errors
        async def op():
            raise _op_error("no such table: chats")

        with pytest.raises(OperationalError):
            await op()

    async def test_stale_foreign_key_becomes_transient(self):
        @translate_db_errors
        async def op():
            raise _integrity_error("FOREIGN KEY constraint failed")

        with pytest.raises(TransientError):
            await op()

    async def test_unique_violation_passes_through(self):
        @translate_db_errors
        async def op():
            raise _integrity_error("UNIQUE constraint failed: chats.id")

        with pytest.raises(IntegrityError):
            await op()


@pytest.mark.asyncio
class TestRetryOnDbLock:
    async def test_retries_then_succeeds(self):
        mock = AsyncMock(side_effect=[TransientError("busy"), TransientError("busy"), "ok"])

        @retry_on_db_lock(retries=3, initial_delay=0.01)
        async def op():
            return await mock()

        with patch("core.helpers.db_utils.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await op() == "ok"
        assert mock.await_count == 3
        assert sleep.await_count == 2

    async def test_gives_up(self):
        mock = AsyncMock(side_effect=TransientError("busy"))

        @retry_on_db_lock(retries=2, initial_delay=0.01)
        async def op():
            return await mock()

        with patch("core.helpers.db_utils.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(TransientError):
                await op()
        assert mock.await_count == 2

    async def test_permanent_errors_not_retried(self):
        mock = AsyncMock(side_effect=PermanentError("nope"))

        @retry_on_db_lock(retries=5, initial_delay=0.01)
        async def op():
            return await mock()

        with pytest.raises(PermanentError):
            await op()
        assert mock.await_count == 1

    async def test_default_retries_from_settings(self, monkeypatch):
        from core.config import settings
        monkeypatch.setattr(settings, "DB_LOCK_RETRIES", 4)
        mock = AsyncMock(side_effect=TransientError("busy"))

        @retry_on_db_lock(initial_delay=0.01)
        async def op():
            return await mock()

        with patch("core.helpers.db_utils.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(TransientError):
                await op()
        assert mock.await_count == 4

from datetime import datetime, timedelta

import pytest

from repositories.identity_repo import IdentityRepository
from repositories.snapshot_repo import SnapshotRepository


@pytest.mark.asyncio
class TestSnapshotRepository:
    @pytest.fixture
    def repo(self, database):
        return SnapshotRepository(database)

    @pytest.fixture
    async def ids(self, database):
        identity = IdentityRepository(database)
        chat, _ = await identity.insert_chat(-10)
        alice, _ = await identity.insert_account(1)
        bob, _ = await identity.insert_account(2)
        return chat, alice, bob

    async def test_latest_admin_snapshot_wins(self, repo, ids):
        chat, alice, _ = ids
        t0 = datetime(2024, 1, 1)
        await repo.record_admin(alice, chat, True, at=t0)
        await repo.record_admin(alice, chat, False, at=t0 + timedelta(minutes=5))
        assert await repo.is_admin(alice, chat) is False

        # an older event arriving late does not override the newer one
        await repo.record_admin(alice, chat, True, at=t0 + timedelta(minutes=1))
        assert await repo.is_admin(alice, chat) is False

    async def test_unknown_is_not_admin(self, repo, ids):
        chat, alice, _ = ids
        assert await repo.is_admin(alice, chat) is False

    async def test_current_admins(self, repo, ids):
        chat, alice, bob = ids
        await repo.record_admin(alice, chat, True)
        await repo.record_admin(bob, chat, True)
        await repo.record_admin(bob, chat, False)
        assert await repo.current_admins(chat) == [alice]

    async def test_permissions_history(self, repo, ids):
        chat, _, _ = ids
        assert await repo.current_permissions(chat) is None

        t0 = datetime(2024, 1, 1)
        await repo.record_permissions(chat, {"can_delete_messages": False}, at=t0)
        await repo.record_permissions(chat, {"can_delete_messages": True}, at=t0 + timedelta(hours=1))

        current = await repo.current_permissions(chat)
        assert current.permissions == {"can_delete_messages": True}
        assert current.updated_at == t0 + timedelta(hours=1)

import asyncio

import pytest

from core.algorithms.bk_tree import to_signed64
from repositories.identity_repo import IdentityRepository
from repositories.media_repo import CachedPostRepository
from repositories.notification_repo import PendingNotificationRepository
from services.hash_index import HashIndex


@pytest.fixture
async def accounts(database):
    identity = IdentityRepository(database)
    a, _ = await identity.insert_account(1)
    b, _ = await identity.insert_account(2)
    return a, b


@pytest.mark.asyncio
class TestHashIndex:
    @pytest.fixture
    def store(self, database):
        return PendingNotificationRepository(database)

    @pytest.fixture
    def index(self, store):
        return HashIndex(store)

    async def test_insert_is_idempotent(self, index, accounts):
        a, _ = accounts
        first, created = await index.insert(0b1010, account_id=a, message_id=1, photo_id="p")
        again, created_again = await index.insert(0b1010, account_id=a, message_id=1, photo_id="p")
        assert created is True
        assert created_again is False
        assert again.id == first.id
        assert len(index) == 1

    async def test_load_rebuilds_from_store(self, store, accounts):
        a, b = accounts
        await store.get_or_create(1, account_id=a, message_id=1, photo_id="p")
        await store.get_or_create(2, account_id=b, message_id=2, photo_id="p")
        index = HashIndex(store)
        assert len(index) == 0
        assert await index.load() == 2
        assert await index.load() == 2

    async def test_insert_heals_rows_written_elsewhere(self, index, store, accounts):
        a, _ = accounts
        await store.get_or_create(5, account_id=a, message_id=1, photo_id="p")
        entry, created = await index.insert(5, account_id=a, message_id=1, photo_id="p")
        assert created is False
        assert [e.id for _, _, e in index.range_query(5, 0)] == [entry.id]

    async def test_range_query_order_and_signed_hashes(self, index, accounts):
        a, _ = accounts
        await index.insert(-1, account_id=a, message_id=1, photo_id="p")      # all bits set
        await index.insert(-2, account_id=a, message_id=2, photo_id="p")      # one bit off
        await index.insert(0, account_id=a, message_id=3, photo_id="p")       # far away

        results = list(index.range_query(-1, 3))
        assert [(h, d) for h, d, _ in results] == [(-1, 0), (-2, 1)]
        assert [e.message_id for _, _, e in results] == [1, 2]

    async def test_range_query_is_single_use(self, index, accounts):
        a, _ = accounts
        await index.insert(3, account_id=a, message_id=1, photo_id="p")
        it = index.range_query(3, 0)
        assert len(list(it)) == 1
        assert list(it) == []

    async def test_negative_radius(self, index):
        with pytest.raises(ValueError):
            index.range_query(0, -1)
        with pytest.raises(ValueError):
            await index.delete_within_radius(1, 0, -1)

    async def test_lookup_exact(self, index, accounts):
        a, _ = accounts
        entry, _ = await index.insert(9, account_id=a, message_id=1, photo_id="p")
        assert await index.lookup_exact(a, (9, 1, "p")) == entry
        assert await index.lookup_exact(a, (9, 2, "p")) is None

    async def test_delete_radius_zero_is_scoped_to_owner(self, index, store, accounts):
        a, b = accounts
        await index.insert(7, account_id=a, message_id=1, photo_id="p")
        await index.insert(7, account_id=b, message_id=2, photo_id="p")
        await index.insert(6, account_id=a, message_id=3, photo_id="p")

        deleted = await index.delete_within_radius(a, 7, 0)
        assert [e.message_id for e in deleted] == [1]
        assert sorted(e.message_id for _, _, e in index.range_query(7, 1)) == [2, 3]
        assert sorted(e.message_id for e in await store.list_hashed()) == [2, 3]

    async def test_delete_within_radius(self, index, store, accounts):
        a, b = accounts
        await index.insert(0b0000, account_id=a, message_id=1, photo_id="p")
        await index.insert(0b0011, account_id=a, message_id=2, photo_id="p")
        await index.insert(0b1111, account_id=a, message_id=3, photo_id="p")
        await index.insert(0b0001, account_id=b, message_id=4, photo_id="p")

        deleted = await index.delete_within_radius(a, 0b0000, 2)
        assert sorted(e.message_id for e in deleted) == [1, 2]
        assert sorted(e.message_id for e in await store.list_hashed()) == [3, 4]
        assert len(index) == 2

    async def test_concurrent_claims_never_overlap(self, index, accounts):
        a, _ = accounts
        for message_id in range(5):
            await index.insert(42, account_id=a, message_id=message_id, photo_id="p")

        results = await asyncio.gather(*(index.delete_within_radius(a, 42, 0) for _ in range(4)))
        claimed = [e.message_id for batch in results for e in batch]
        assert sorted(claimed) == [0, 1, 2, 3, 4]

    async def test_unhashed_entries_are_not_indexed(self, database):
        index = HashIndex(CachedPostRepository(database))
        post, created = await index.insert(None, post_url="u", thumb=False, cdn_url="c", width=1, height=1)
        assert created is True
        assert post.hash is None
        assert len(index) == 0

    async def test_unsigned_hash_round_trips_as_signed(self, index, store, accounts):
        a, _ = accounts
        unsigned = 0xF0F0_F0F0_F0F0_F0F0
        entry, created = await index.insert(unsigned, account_id=a, message_id=1, photo_id="p")
        assert created is True
        assert entry.hash == to_signed64(unsigned)
        assert await index.lookup_exact(a, (unsigned, 1, "p")) == entry

        deleted = await index.delete_within_radius(a, unsigned, 0)
        assert [e.id for e in deleted] == [entry.id]
        assert await store.list_hashed() == []
        assert len(index) == 0

    async def test_refresh_pulls_rows_from_other_workers(self, index, store, accounts):
        a, _ = accounts
        await index.load()
        other = HashIndex(store)
        written, _ = await other.insert(12, account_id=a, message_id=1, photo_id="p")

        assert list(index.range_query(12, 0)) == []
        assert await index.refresh() == 1
        assert [e.id for _, _, e in index.range_query(12, 0)] == [written.id]
        assert await index.refresh() == 0

    async def test_claim_sees_rows_from_other_workers(self, index, store, accounts):
        a, _ = accounts
        await index.load()
        other = HashIndex(store)
        await other.insert(0b0001, account_id=a, message_id=1, photo_id="p")

        deleted = await index.delete_within_radius(a, 0b0000, 1)
        assert [e.message_id for e in deleted] == [1]
        assert await store.list_hashed() == []

    async def test_deleted_ids_are_not_reused(self, index, accounts):
        a, _ = accounts
        first, _ = await index.insert(1, account_id=a, message_id=1, photo_id="p")
        await index.delete_within_radius(a, 1, 0)
        second, _ = await index.insert(1, account_id=a, message_id=2, photo_id="p")
        assert second.id > first.id

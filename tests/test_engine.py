"""
test_engine.py - Tests for queue drains.

These tests verify that a drain replays pending operations in order,
keeps failed ones in place, and only refreshes the cache once the
queue is empty.
"""

import asyncio

from observation_sync.connectivity import ConnectivityGate
from observation_sync.context import SyncContext
from observation_sync.engine import (
    SKIP_EMPTY,
    SKIP_IN_PROGRESS,
    SKIP_OFFLINE,
    SKIP_UNAUTHENTICATED,
    SKIP_UNREACHABLE,
)
from observation_sync.models import Observation
from observation_sync.utils.ids import is_placeholder_id


async def open_context(remote, store, **kwargs):
    return await SyncContext.open(remote, store, gate=ConnectivityGate(online=False), **kwargs)


async def go_online(ctx):
    task = ctx.gate.set_online(True)
    if task is not None:
        return await task
    return None


class TestMerleNoirScenario:
    """Offline create, reconnect, drain."""

    def test_offline_create_then_drain(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store)
            created = await ctx.create(Observation(species_name="Merle noir", count=2))

            assert is_placeholder_id(created.id)
            assert ctx.pending_count() == 1
            assert [r.id for r in ctx.list()] == [created.id]
            assert remote.mutations() == []

            result = await go_online(ctx)

            assert result.succeeded == 1
            assert result.fully_drained
            assert result.refreshed
            assert ctx.pending_count() == 0
            [synced] = ctx.list()
            assert synced.species_name == "Merle noir"
            assert synced.count == 2
            assert not is_placeholder_id(synced.id)
            assert synced.id in remote.records

        asyncio.run(scenario())


class TestDrainOrdering:

    def test_insert_then_update_reach_remote_in_order(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store)
            created = await ctx.create(Observation(species_name="Merle noir"))
            await ctx.update(Observation(species_name="Merle noir", id=created.id, count=5))

            result = await go_online(ctx)

            assert result.succeeded == 2
            assert remote.mutations() == [("create", created.id), ("update", "srv-1")]
            assert remote.records["srv-1"].count == 5

        asyncio.run(scenario())

    def test_failed_insert_holds_later_operations(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store)
            created = await ctx.create(Observation(species_name="Merle noir"))
            await ctx.update(Observation(species_name="Merle noir", id=created.id, count=5))
            other = await ctx.create(Observation(species_name="Rouge-gorge"))
            remote.fail_next = 1

            result = await go_online(ctx)

            # the update waits for its insert; the unrelated record goes through
            assert remote.mutations() == [("create", created.id), ("create", other.id)]
            assert result.succeeded == 1
            assert result.remaining == 2
            assert not result.refreshed
            ops = ctx.pending_operations()
            assert [(op.kind.value, op.record_id) for op in ops] == [
                ("INSERT", created.id),
                ("UPDATE", created.id),
            ]
            assert [op.attempts for op in ops] == [1, 0]

            result = await ctx.drain_queue()

            assert result.fully_drained
            assert remote.mutations()[2:] == [("create", created.id), ("update", "srv-2")]
            assert remote.records["srv-2"].count == 5

        asyncio.run(scenario())

    def test_failed_update_holds_later_delete(self, remote, store):
        async def scenario():
            remote.seed(Observation(species_name="Loup", id="srv-a"))
            ctx = await open_context(remote, store)
            await ctx.update(Observation(species_name="Loup gris", id="srv-a"))
            await ctx.delete("srv-a")
            remote.reject_ids.add("srv-a")

            result = await go_online(ctx)

            assert remote.mutations() == [("update", "srv-a")]
            assert result.remaining == 2
            assert "srv-a" in remote.records

        asyncio.run(scenario())

    def test_confirmed_placeholder_resolves_across_drains(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store)
            created = await ctx.create(Observation(species_name="Hérisson"))
            await ctx.update(Observation(species_name="Hérisson", id=created.id, count=3))
            remote.reject_ids.add("srv-1")

            await go_online(ctx)

            # insert confirmed, update refused: cache keeps the placeholder
            assert remote.mutations() == [("create", created.id), ("update", "srv-1")]
            assert [r.id for r in ctx.list()] == [created.id]
            assert ctx.aliases.resolve(created.id) == "srv-1"

            # a direct delete must queue behind the pending update
            await ctx.delete(created.id)
            assert ctx.pending_count() == 2

            remote.reject_ids.clear()
            result = await ctx.drain_queue()

            assert result.fully_drained
            assert remote.mutations()[2:] == [("update", "srv-1"), ("delete", "srv-1")]
            assert remote.records == {}
            assert ctx.list() == []
            assert len(ctx.aliases) == 0

        asyncio.run(scenario())

    def test_aliases_survive_restart(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store)
            created = await ctx.create(Observation(species_name="Hérisson"))
            await ctx.update(Observation(species_name="Hérisson", id=created.id, count=3))
            remote.reject_ids.add("srv-1")
            await go_online(ctx)

            restarted = await open_context(remote, store)
            remote.reject_ids.clear()
            restarted.gate.set_online(True)
            await restarted.gate.wait_idle()

            assert remote.mutations()[-1] == ("update", "srv-1")
            assert restarted.pending_count() == 0
            assert [r.id for r in restarted.list()] == ["srv-1"]

        asyncio.run(scenario())


class TestCacheRefreshGating:

    def test_partial_drain_keeps_cache(self, remote, store):
        async def scenario():
            remote.seed(Observation(species_name="Loup", id="srv-a"))
            ctx = await open_context(remote, store)
            await ctx.create(Observation(species_name="Merle noir"))
            await ctx.create(Observation(species_name="Rouge-gorge"))
            before = ctx.list()
            remote.fail_next = 1

            result = await go_online(ctx)

            assert result.remaining == 1
            assert not result.refreshed
            assert ctx.list() == before
            assert ("fetch_all", "") not in remote.calls

        asyncio.run(scenario())

    def test_full_drain_mirrors_remote(self, remote, store):
        async def scenario():
            remote.seed(Observation(species_name="Loup", id="srv-a"))
            ctx = await open_context(remote, store)
            await ctx.create(Observation(species_name="Merle noir"))

            result = await go_online(ctx)

            assert result.refreshed
            assert ctx.list() == await remote.fetch_all()

        asyncio.run(scenario())

    def test_refresh_refused_while_pending(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store)
            await ctx.create(Observation(species_name="Merle noir"))
            return await ctx.engine.refresh_cache()

        assert asyncio.run(scenario()) is False
        assert remote.calls == []

    def test_refresh_failure_keeps_cache(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store)
            await ctx.create(Observation(species_name="Merle noir"))
            ctx.log.discard(ctx.log.snapshot()[0])
            remote.reachable = False
            refreshed = await ctx.engine.refresh_cache()
            return refreshed, ctx.list()

        refreshed, records = asyncio.run(scenario())
        assert refreshed is False
        assert [r.species_name for r in records] == ["Merle noir"]

    def test_write_during_fetch_is_kept(self, remote, store):
        async def scenario():
            remote.seed(Observation(species_name="Loup", id="srv-a"))
            ctx = await SyncContext.open(remote, store, gate=ConnectivityGate(online=True))
            remote.fetch_delay = 0.05
            refreshing = asyncio.create_task(ctx.refresh())
            await asyncio.sleep(0.01)
            created = await ctx.create(Observation(species_name="Merle noir"))
            during = await refreshing

            remote.fetch_delay = 0.0
            after = await ctx.refresh()
            return created, during, after

        created, during, after = asyncio.run(scenario())
        assert created.id == "srv-1"
        assert [r.id for r in during] == ["srv-1"]
        assert sorted(r.id for r in after) == ["srv-1", "srv-a"]


class TestDrainSkips:

    def test_offline_drain_is_skipped(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store)
            await ctx.create(Observation(species_name="Merle noir"))
            return await ctx.drain_queue()

        result = asyncio.run(scenario())
        assert result.skipped == SKIP_OFFLINE
        assert result.remaining == 1
        assert remote.calls == []

    def test_empty_queue_replay_changes_nothing(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store)
            await ctx.create(Observation(species_name="Merle noir"))
            await go_online(ctx)
            cache = ctx.list()
            calls = list(remote.calls)

            result = await ctx.drain_queue()

            assert result.skipped == SKIP_EMPTY
            assert remote.calls == calls
            assert ctx.list() == cache

        asyncio.run(scenario())

    def test_no_user_keeps_queue(self, remote, store):
        remote.user_id = None

        async def scenario():
            ctx = await open_context(remote, store)
            await ctx.create(Observation(species_name="Merle noir"))
            return await go_online(ctx), ctx.pending_count()

        result, pending = asyncio.run(scenario())
        assert result.skipped == SKIP_UNAUTHENTICATED
        assert pending == 1
        assert remote.mutations() == []

    def test_unreachable_remote_keeps_queue(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store)
            await ctx.create(Observation(species_name="Merle noir"))
            remote.reachable = False
            return await go_online(ctx)

        result = asyncio.run(scenario())
        assert result.skipped == SKIP_UNREACHABLE
        assert result.remaining == 1

    def test_concurrent_drains_do_not_overlap(self, remote, store):
        async def scenario():
            ctx = await SyncContext.open(remote, store, gate=ConnectivityGate(online=True))
            # the direct create fails, so the record is queued
            remote.fail_next = 1
            await ctx.create(Observation(species_name="Merle noir"))
            remote.delay = 0.05
            return await asyncio.gather(ctx.drain_queue(), ctx.drain_queue())

        first, second = asyncio.run(scenario())
        assert first.succeeded == 1
        assert second.skipped == SKIP_IN_PROGRESS
        assert len(remote.mutations()) == 2


class TestRetryPolicy:

    def test_timeout_retains_item(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store, timeout=0.05)
            await ctx.create(Observation(species_name="Merle noir"))
            remote.delay = 1.0
            result = await go_online(ctx)
            return result, ctx.pending_operations()

        result, ops = asyncio.run(scenario())
        assert result.remaining == 1
        assert ops[0].attempts == 1
        assert remote.records == {}

    def test_rejected_item_is_kept_and_reported_stalled(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store, stall_threshold=2)
            created = await ctx.create(Observation(species_name="Merle noir"))
            remote.reject_ids.add(created.id)

            first = await go_online(ctx)
            second = await ctx.drain_queue()
            return first, second, ctx

        first, second, ctx = asyncio.run(scenario())
        assert first.stalled == ()
        assert len(second.stalled) == 1
        assert second.stalled[0].attempts == 2
        assert ctx.pending_count() == 1

    def test_known_id_insert_is_upserted(self, remote, store):
        async def scenario():
            ctx = await open_context(remote, store)
            await ctx.create(Observation(species_name="Loup", id="srv-known"))
            await go_online(ctx)

        asyncio.run(scenario())
        assert remote.mutations() == [("bulk_upsert", "srv-known")]
        assert "srv-known" in remote.records

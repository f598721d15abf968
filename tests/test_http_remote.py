"""
test_http_remote.py - Tests for the HTTP Remote Store.

The client talks to the reference server in-process through
httpx.ASGITransport; failure mapping uses httpx.MockTransport.
"""

import asyncio
import os
import shutil
import tempfile

import httpx
import pytest

from observation_sync.connectivity import ConnectivityGate
from observation_sync.context import SyncContext
from observation_sync.errors import (
    AuthenticationError,
    RemoteRejectedError,
    RemoteUnavailableError,
)
from observation_sync.models import GeoPoint, Observation, TaxonomicGroup
from observation_sync.remote.http_remote import HTTPRemoteStore
from observation_sync.server import (
    ObservationRepository,
    app,
    get_repository,
    get_token_map,
)
from observation_sync.storage.sqlite_store import SQLiteDurableStore
from observation_sync.utils.ids import is_placeholder_id

TOKENS = {"tok-alice": "alice", "tok-bob": "bob"}


class TestHTTPRemoteStore:

    def setup_method(self):
        self.tmpdir = tempfile.mkdtemp()
        self.repo = ObservationRepository(os.path.join(self.tmpdir, "server.db"))
        app.dependency_overrides[get_repository] = lambda: self.repo
        app.dependency_overrides[get_token_map] = lambda: TOKENS

    def teardown_method(self):
        app.dependency_overrides.clear()
        self.repo.close()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def make_remote(self, token="tok-alice"):
        return HTTPRemoteStore(
            "http://testserver", auth_token=token, transport=httpx.ASGITransport(app=app)
        )

    def test_ping_and_current_user(self):
        async def scenario():
            remote = self.make_remote()
            anonymous = self.make_remote(token="wrong")
            try:
                return await remote.ping(), await remote.current_user(), await anonymous.current_user()
            finally:
                await remote.close()
                await anonymous.close()

        assert asyncio.run(scenario()) == (True, "alice", None)

    def test_record_lifecycle(self):
        record = Observation(
            species_name="Merle noir",
            latin_name="Turdus merula",
            taxonomic_group=TaxonomicGroup.BIRD,
            date="2024-05-01",
            gps=GeoPoint(lat=48.85, lon=2.35),
        )

        async def scenario():
            remote = self.make_remote()
            try:
                created = await remote.create(record.with_id("temp-1-abcdef01"))
                await remote.update(Observation(species_name="Merle noir", id=created.id, count=3))
                after_update = await remote.fetch_all()
                await remote.delete(created.id)
                await remote.delete(created.id)
                return created, after_update, await remote.fetch_all()
            finally:
                await remote.close()

        created, after_update, after_delete = asyncio.run(scenario())
        assert created.id and not is_placeholder_id(created.id)
        assert created.gps == GeoPoint(lat=48.85, lon=2.35)
        assert created.taxonomic_group is TaxonomicGroup.BIRD
        assert [(r.id, r.count) for r in after_update] == [(created.id, 3)]
        assert after_delete == []

    def test_bulk_upsert(self):
        async def scenario():
            remote = self.make_remote()
            try:
                await remote.bulk_upsert([])
                await remote.bulk_upsert([
                    Observation(species_name="Loup", id="a", date="2024-01-01"),
                    Observation(species_name="Lynx", id="b", date="2024-02-01"),
                ])
                return await remote.fetch_all()
            finally:
                await remote.close()

        assert [r.id for r in asyncio.run(scenario())] == ["b", "a"]

    def test_bad_token_raises_authentication_error(self):
        async def scenario():
            remote = self.make_remote(token="wrong")
            try:
                await remote.fetch_all()
            finally:
                await remote.close()

        with pytest.raises(AuthenticationError):
            asyncio.run(scenario())

    def test_foreign_record_is_rejected(self):
        async def scenario():
            alice = self.make_remote()
            bob = self.make_remote(token="tok-bob")
            try:
                await alice.update(Observation(species_name="Loup", id="abc"))
                await bob.update(Observation(species_name="X", id="abc"))
            finally:
                await alice.close()
                await bob.close()

        with pytest.raises(RemoteRejectedError) as info:
            asyncio.run(scenario())
        assert info.value.status_code == 403

    def test_offline_create_syncs_to_server(self):
        async def scenario():
            remote = self.make_remote()
            store = SQLiteDurableStore(os.path.join(self.tmpdir, "client.db"))
            ctx = await SyncContext.open(remote, store, gate=ConnectivityGate())
            created = await ctx.create(Observation(species_name="Merle noir"))
            assert is_placeholder_id(created.id)

            result = await ctx.gate.set_online(True)
            records = ctx.list()
            await ctx.close()
            return result, records

        result, records = asyncio.run(scenario())
        assert result.fully_drained
        assert len(records) == 1
        assert not is_placeholder_id(records[0].id)
        assert [r["id"] for r in self.repo.list("alice")] == [records[0].id]


class TestHTTPErrorMapping:

    def make_remote(self, handler):
        return HTTPRemoteStore("http://remote", transport=httpx.MockTransport(handler))

    def run_fetch(self, handler):
        async def scenario():
            remote = self.make_remote(handler)
            try:
                return await remote.fetch_all()
            finally:
                await remote.close()

        return asyncio.run(scenario())

    def test_server_error_is_unavailable(self):
        with pytest.raises(RemoteUnavailableError) as info:
            self.run_fetch(lambda request: httpx.Response(503, json={"detail": "down"}))
        assert info.value.status_code == 503
        assert "down" in str(info.value)

    def test_connect_error_is_unavailable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RemoteUnavailableError):
            self.run_fetch(refuse)

    def test_timeout_is_unavailable(self):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(RemoteUnavailableError):
            self.run_fetch(slow)

    def test_client_error_is_rejected(self):
        with pytest.raises(RemoteRejectedError) as info:
            self.run_fetch(lambda request: httpx.Response(422, json=[{"msg": "bad"}]))
        assert info.value.status_code == 422

    def test_401_is_authentication_error(self):
        with pytest.raises(AuthenticationError):
            self.run_fetch(lambda request: httpx.Response(401, json={"detail": "no"}))

    def test_ping_false_when_unreachable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async def scenario():
            remote = self.make_remote(refuse)
            try:
                return await remote.ping()
            finally:
                await remote.close()

        assert asyncio.run(scenario()) is False

    def test_token_sent_as_bearer(self):
        seen = []

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"user_id": "alice"})

        async def scenario():
            remote = HTTPRemoteStore(
                "http://remote", auth_token="secret", transport=httpx.MockTransport(handler)
            )
            try:
                return await remote.current_user()
            finally:
                await remote.close()

        assert asyncio.run(scenario()) == "alice"
        assert seen == ["Bearer secret"]

import asyncio
import os

import httpx

from observation_sync import ConnectivityGate, HTTPRemoteStore, Observation, SQLiteDurableStore, SyncContext
from observation_sync import server


async def run_example():
    db_path = "example_basic.db"
    server_db_path = "example_server.db"
    for path in (db_path, server_db_path):
        if os.path.exists(path):
            os.remove(path)

    print("--- Observation Sync: Basic Example ---")

    # 1. Reference server in-process, one user
    repository = server.ObservationRepository(server_db_path)
    server.app.dependency_overrides[server.get_repository] = lambda: repository
    server.app.dependency_overrides[server.get_token_map] = lambda: {"demo-token": "naturalist"}
    remote = HTTPRemoteStore(
        "http://observations.local",
        auth_token="demo-token",
        transport=httpx.ASGITransport(app=server.app),
    )

    # 2. Start offline
    gate = ConnectivityGate(online=False)
    ctx = await SyncContext.open(remote, SQLiteDurableStore(db_path), gate=gate)

    # 3. Record a sighting without network
    record = await ctx.create(Observation(species_name="Merle noir", latin_name="Turdus merula", count=2))
    print(f"Recorded offline as {record.id}, {ctx.pending_count()} pending")

    # 4. Connectivity returns: one drain runs
    result = await gate.set_online(True)
    print(f"Drained {result.succeeded} operations, {result.remaining} remaining")
    for obs in ctx.list():
        print(f"  {obs.id}: {obs.species_name} x{obs.count}")

    await ctx.close()
    repository.close()
    print("\nExample finished. Local store saved to", db_path)


if __name__ == "__main__":
    asyncio.run(run_example())

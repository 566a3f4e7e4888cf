import asyncio
import sys
import os

# Add project root to path
sys.path.append(os.getcwd())

from src.core.fleet.repository import PostgresFleetRepository
from src.core.fleet.seed import load_seed
from src.infra.database import close_db, init_db


async def seed():
    db = await init_db()
    try:
        data = await load_seed(PostgresFleetRepository(db))
        print(
            f"Seeded {len(data.routes)} routes, "
            f"{len(data.buses)} buses, {len(data.trips)} trips"
        )
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(seed())

#!/usr/bin/env python3
"""
Create an organization and print its API key.

Creates the tables on first run, inserts the organization, and prints the
raw API key once. Only the key's SHA-256 hash is stored, so save it now.

Usage:
    uv run python scripts/create_organization.py "Acme Recruiting"
"""

import argparse
import asyncio

from documesh.db.engine import async_engine, async_session_factory
from documesh.db.models import Base
from documesh.services.organizations import create_organization


async def main(name: str) -> None:
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as session:
        organization, raw_key = await create_organization(session, name)
        await session.commit()

    await async_engine.dispose()

    print(f"Organization: {organization.name}")
    print(f"ID:           {organization.id}")
    print(f"API key:      {raw_key}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("name", help="Display name of the organization")
    args = parser.parse_args()
    asyncio.run(main(args.name))

import asyncio
import sys
import os

# Aggiungi backend/ alla PYTHONPATH per importare app.*
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "backend"))

from app.core.database import AsyncSessionLocal, engine
from app.models import Base, Database, Tenant


async def reset(seed: bool = True):
    print("Connessione al database, eliminazione tabelle...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        print("Tabelle eliminate. Creazione nuove tabelle...")
        await conn.run_sync(Base.metadata.create_all)

    if seed:
        async with AsyncSessionLocal() as session:
            tenant = Tenant(name="Demo")
            session.add(tenant)
            await session.flush()
            session.add(Database(tenant_id=tenant.id, name="Principale", is_default=True))
            await session.commit()
            print(f"Creato tenant demo (id {tenant.id}) con database predefinito")

    print("Database resettato con successo!")

if __name__ == "__main__":
    asyncio.run(reset(seed="--no-seed" not in sys.argv))

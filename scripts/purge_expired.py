import asyncio

from allinone_pdf.db.session import create_tables, engine
from allinone_pdf.services.cleanup import CleanupScheduler


async def main() -> None:
    # One-shot sweep for deployments where no long-lived process holds the timers
    await create_tables()
    purged = await CleanupScheduler().purge_due()
    await engine.dispose()
    print(f"Purged {purged} expired guest object(s).")


if __name__ == "__main__":
    asyncio.run(main())

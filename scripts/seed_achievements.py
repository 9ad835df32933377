import asyncio
import sys
import os

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.session import AsyncSessionLocal
from services.achievement_service import AchievementService, ACHIEVEMENT_CATALOG
from core.logger import setup_logging, logger

async def seed():
    setup_logging()
    async with AsyncSessionLocal() as session:
        try:
            created = await AchievementService(session).seed_achievements()
            print(f"✅ Achievement catalog ready: {created} created, {len(ACHIEVEMENT_CATALOG) - created} already present.")
        except Exception as e:
            await session.rollback()
            print(f"❌ Error seeding achievements: {e}")
            logger.error("Error seeding achievements", error=str(e))
            raise

if __name__ == "__main__":
    if os.name == 'nt':
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(seed())

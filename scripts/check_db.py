# scripts/check_db.py
# Checks the connection to DATABASE_URL from imprints.core.config.settings
import asyncio

from sqlalchemy import text

from imprints.core.config import settings
from imprints.db.session import make_engine


async def main():
    url = settings.DATABASE_URL
    print('Trying to connect to:', url)
    engine = make_engine(url)
    try:
        async with engine.connect() as conn:
            print('Connection OK, SELECT 1 ->', (await conn.execute(text("SELECT 1"))).scalar())
    except Exception as e:
        print('Connection failed:', e)
    finally:
        await engine.dispose()

if __name__ == '__main__':
    asyncio.run(main())

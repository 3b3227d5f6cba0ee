#!/usr/bin/env python3
# create_table.py - Create database tables for the configured DATABASE_URL
import asyncio
import logging
import sys

from app.core.database import engine, init_db

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def create_tables():
    try:
        logger.info("🔄 Creating database tables...")
        await init_db()
        logger.info("✅ Database tables created successfully!")
    except Exception as e:
        logger.error(f"❌ Error creating tables: {e}")
        sys.exit(1)
    finally:
        await engine.dispose()

if __name__ == "__main__":
    asyncio.run(create_tables())

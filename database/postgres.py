from loguru import logger
from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
    AsyncEngine
)
from core.config import DATABASE_URL
from schemas.schemas import Base

# Global variables
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None


def normalize_database_url(db_url: str) -> str:
    # asyncpg is the production driver
    if db_url.startswith("postgres://"):
        return db_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if db_url.startswith("postgresql://"):
        return db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return db_url


def build_engine(db_url: str) -> AsyncEngine:
    db_url = normalize_database_url(db_url)
    if db_url.startswith("sqlite"):
        return create_async_engine(db_url, echo=False)

    return create_async_engine(
        db_url,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True
    )


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


async def create_tables(bind: AsyncEngine) -> None:
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_postgres(db_url: Optional[str] = None) -> None:
    """
    Initialize SQLAlchemy AsyncEngine and create tables if they don't exist.
    """
    global engine, AsyncSessionLocal

    db_url = db_url or DATABASE_URL
    if not db_url:
        logger.error("DATABASE_URL not found in .env")
        raise ValueError("DATABASE_URL not set")

    try:
        logger.info("Initializing database connection...")

        engine = build_engine(db_url)
        AsyncSessionLocal = build_sessionmaker(engine)

        logger.info("Database connection engine created successfully.")

        await create_tables(engine)

        logger.info("Database tables verified/created successfully.")

    except Exception as e:
        logger.error(f"Error initializing Database: {e}")
        raise

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI Routes.
    """
    if AsyncSessionLocal is None:
        raise ConnectionError("Database is not initialized. Call init_postgres() first.")

    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

async def close_postgres() -> None:
    global engine
    if engine:
        try:
            logger.info("Closing Database connection...")
            await engine.dispose()
            engine = None
            logger.info("Database connection closed successfully.")
        except Exception as e:
            logger.error(f"Error closing Database connection: {e}")
            raise
    else:
        logger.warning("Database was not initialized.")

import uuid
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy import DateTime, String
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from pitchperfect.config import settings

_is_sqlite = settings.database_url.startswith("sqlite")

engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    # aiosqlite runs the connection on a worker thread
    connect_args={"check_same_thread": False} if _is_sqlite else {},
)
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class UUIDMixin:
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )


async def get_db() -> AsyncIterator[AsyncSession]:
    """Request-scoped session; commits on success, rolls back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create presentation and agent tables if missing."""
    import pitchperfect.models  # noqa: F401  registers every mapped class

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

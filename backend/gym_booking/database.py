from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


settings = get_settings()

engine = build_engine(settings.database_url, echo=settings.echo_sql)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

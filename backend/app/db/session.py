from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from backend.app.core.config import settings

# Un lot d'écritures = jusqu'à write_batch_size connexions simultanées
engine = create_async_engine(
    settings.database_url,
    pool_pre_ping=True,
    pool_size=settings.write_batch_size,
    echo=settings.sql_echo,
)
SessionLocal = async_sessionmaker(engine, autoflush=False, expire_on_commit=False)

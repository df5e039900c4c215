from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import settings
from .base import Base

engine = create_async_engine(settings.POSTGRES_DSN, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def init_models():
    ## In dev-only "create_all" mode build the schema here; otherwise, migrations own the schema.
    if settings.DB_MANAGE == "create_all":
        # register every mapped table on Base.metadata
        from app.modules.profiles import models as _profiles  # noqa: F401
        from app.modules.conversations import models as _conversations  # noqa: F401
        from app.modules.appointments import models as _appointments  # noqa: F401
        from app.modules.events import outbox as _outbox  # noqa: F401
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

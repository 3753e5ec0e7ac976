from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool
from .config import settings
from .base import Base

def _engine_kwargs(dsn: str) -> dict:
    if dsn.startswith("sqlite"):
        # aiosqlite connections are cheap; one per checkout avoids cross-loop reuse
        return {"poolclass": NullPool, "connect_args": {"timeout": 30}}
    return {"pool_pre_ping": True}

engine = create_async_engine(settings.DATABASE_DSN, **_engine_kwargs(settings.DATABASE_DSN))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_session():
    async with SessionLocal() as session:
        yield session

def _import_models():
    # every mapped class must be registered on Base.metadata before create_all
    from consentgate.modules.directory import models as _directory  # noqa: F401
    from consentgate.modules.authorizations import models as _authorizations  # noqa: F401
    from consentgate.modules.encounters import models as _encounters  # noqa: F401
    from consentgate.modules.audit import models as _audit  # noqa: F401
    from consentgate.modules.notifications import models as _notifications  # noqa: F401
    from consentgate.modules.events import outbox as _outbox  # noqa: F401

async def create_all(bind=None):
    _import_models()
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def init_models():
    # In dev-only "create_all" mode, build the schema; otherwise, migrations own it.
    if settings.DB_MANAGE == "create_all":
        await create_all()

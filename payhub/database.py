"""Async SQLAlchemy engine & session — supports SQLite and PostgreSQL."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from payhub.config import get_settings

settings = get_settings()

# SQLite: one short-lived connection per session, writers wait on the file lock.
# PostgreSQL uses pool_size
if settings.is_sqlite:
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        poolclass=NullPool,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
else:
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=10,
    )

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@event.listens_for(Base, "init", propagate=True)
def _apply_defaults(target, args, kwargs):
    """Apply Column defaults at Python level right after __init__."""
    from sqlalchemy import inspect as sa_inspect

    mapper = sa_inspect(type(target))
    for col_attr in mapper.column_attrs:
        key = col_attr.key
        if key in kwargs or getattr(target, key, None) is not None:
            continue
        default = col_attr.columns[0].default
        if default is None:
            continue
        if default.is_callable:
            # SQLAlchemy wraps zero-arg callables to accept an execution context
            setattr(target, key, default.arg(None))
        elif default.is_scalar:
            setattr(target, key, default.arg)

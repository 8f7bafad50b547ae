from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

# stable constraint names so migrations and models agree
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
}

Base = declarative_base(metadata=MetaData(naming_convention=NAMING_CONVENTION))


def get_engine(database_url: str, echo: bool = False):
    options = {"echo": echo, "future": True}
    if not database_url.startswith("sqlite"):
        # long-lived workers outlast idle connections
        options["pool_pre_ping"] = True
    return create_async_engine(database_url, **options)


def get_session(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
    )

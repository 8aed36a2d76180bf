from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
import logging

from ..core.config import settings
from .base import Base

# Setup logging
logger = logging.getLogger(__name__)


def make_engine(uri: str):
    """Create an engine with pool settings suited to the backing database."""
    if uri.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in uri or uri == "sqlite://":
            # One shared connection, otherwise each thread sees its own empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(uri, **kwargs)
    return create_engine(
        uri,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args={
            "connect_timeout": 10,
            "application_name": "edge_functions_controller"
        } if "postgresql" in uri else {}
    )


engine = make_engine(settings.SQLALCHEMY_DATABASE_URI)

# Create a SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(bind=None):
    """Create the controller tables if they do not exist yet."""
    from .. import models  # noqa: F401  registers all tables on Base.metadata

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info(f"Database tables ready on {bind.url.render_as_string(hide_password=True)}")

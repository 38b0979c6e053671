import logging

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from core.config import settings

# make sure all SQLModel models are imported (models) before initializing DB
# otherwise, SQLModel might fail to initialize relationships properly
import models  # noqa: F401

logger = logging.getLogger(__name__)


def build_engine(database_uri: str) -> Engine:
    connect_args = {}
    if database_uri.startswith("sqlite"):
        # API handlers and the CLI may touch the connection from another thread
        connect_args["check_same_thread"] = False
    return create_engine(database_uri, connect_args=connect_args)


engine = build_engine(str(settings.SQLALCHEMY_DATABASE_URI))


def init_db(db_engine: Engine = engine) -> None:
    SQLModel.metadata.create_all(db_engine)
    logger.info("Database schema created on %s", db_engine.url.render_as_string())


def get_session(db_engine: Engine = engine) -> Session:
    return Session(db_engine)

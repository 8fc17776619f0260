# Database engine and table creation

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

def make_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # background conversions write from worker threads
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, echo=False, connect_args=connect_args)

def init_db(engine: Engine) -> None:
    # models must be imported so the Job table is registered on the metadata
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(engine)

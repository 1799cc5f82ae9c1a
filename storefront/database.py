# storefront/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from .models import Base

engine = None

def init_engine(database_url: str):
    """Bind the module engine and create missing tables."""
    global engine
    if engine is not None:
        engine.dispose()
    engine = create_engine(database_url, future=True)
    Base.metadata.create_all(engine)
    return engine

def main_session():
    if engine is None:
        raise RuntimeError("database engine not initialised, call init_engine() first")
    return Session(engine, expire_on_commit=False)

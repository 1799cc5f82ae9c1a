# storefront/drop_tables.py
from sqlalchemy import create_engine

from .config import Config
from .models import Base


def drop_all(database_url=None):
    engine = create_engine(database_url or Config.DATABASE_URL, future=True)
    Base.metadata.drop_all(engine)
    engine.dispose()


if __name__ == "__main__":
    drop_all()
    print("Dropped all tables. They'll be recreated on app start.")

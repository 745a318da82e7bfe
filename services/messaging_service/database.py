from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from models import Base
from settings import DATABASE_URL

engine = create_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    # The hosted database owns the schema; this only bootstraps local/dev databases.
    Base.metadata.create_all(bind=engine)

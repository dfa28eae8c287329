from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import settings


def make_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # Sessions are used from FastAPI's threadpool and from Celery workers
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


engine = make_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# raidplan/db/session.py
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from raidplan.config import get_settings

settings = get_settings()

is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# FastAPI runs sync endpoints in a threadpool, so SQLite connections cross threads
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if is_sqlite else {},
)

if is_sqlite:
    # SQLite ignores ON DELETE CASCADE / SET NULL unless this is on per connection
    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()

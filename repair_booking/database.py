from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from repair_booking.config import settings

connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Yield a database session for a single request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables"""
    # Register models on Base.metadata before create_all
    import repair_booking.models  # noqa: F401

    Base.metadata.create_all(bind=engine)

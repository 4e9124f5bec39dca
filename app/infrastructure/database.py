from sqlalchemy import JSON, Column, DateTime, Integer, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.config import settings

# SQLite needs this to be shared with FastAPI's threadpool
_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(settings.DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class CompletedOrderRecord(Base):
    __tablename__ = "completed_orders"

    id = Column(String, primary_key=True, index=True)
    status = Column(String, default="confirmed")

    # Line items are stored as JSON; they never change after completion.
    items = Column(JSON, nullable=False)

    total_cost = Column(Integer, nullable=False)  # minor currency units
    customer_info = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

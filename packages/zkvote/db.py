from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    BigInteger,
    Index,
    Text,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30} if DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class NullifierRecord(Base):
    """A consumed nullifier. Rows are only ever inserted by the registry."""

    __tablename__ = "nullifiers"
    id = Column(Integer, primary_key=True)
    poll_id = Column(BigInteger, nullable=False)
    # field elements exceed 64 bits, keep the decimal form
    nullifier_hash = Column(String(80), nullable=False)
    commitment = Column(String(80), nullable=True)
    proof_root = Column(String(64), nullable=True)
    consumed_at = Column(String, nullable=False)

    __table_args__ = (
        Index("idx_poll_nullifier", "poll_id", "nullifier_hash", unique=True),
    )


class ProofAudit(Base):
    __tablename__ = "proof_audit"
    id = Column(Integer, primary_key=True)
    circuit = Column(String, nullable=False, index=True)
    mode = Column(String, nullable=False)
    signals_hash = Column(String, nullable=False)
    proof_root = Column(String, nullable=False, index=True)
    public_signals = Column(Text, nullable=False)
    timestamp = Column(String, nullable=False)


def init_db():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

"""
SQLAlchemy ORM models for filings and their child records.

Architecture:
- Primary keys: UUID strings (portable between SQLite and PostgreSQL)
- Answer maps and the wizard progress snapshot are JSON columns
- Monetary values use Numeric(12, 2)
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator


# Cross-database compatible JSON type
# Uses JSONB on PostgreSQL, JSON on SQLite/others
class JSONB(TypeDecorator):
    """A portable JSONB type that works with both PostgreSQL and SQLite."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_JSONB())
        else:
            return dialect.type_descriptor(JSON())


Base = declarative_base()


class FilingRow(Base):
    """Top-level filing."""
    __tablename__ = "filings"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    tax_year = Column(Integer, nullable=True)
    kind = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="DRAFT")

    reference_number = Column(String(32), nullable=True, unique=True)
    total_price = Column(Numeric(12, 2), nullable=False, default=0)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    jurisdiction = Column(String(8), nullable=True)

    wizard_progress = Column(JSONB, nullable=True)

    submitted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<FilingRow(id={self.id}, kind={self.kind}, status={self.status})>"


class PersonRecordRow(Base):
    """One person's answers inside an INDIVIDUAL filing."""
    __tablename__ = "person_records"

    id = Column(String(36), primary_key=True)
    filing_id = Column(String(36), ForeignKey("filings.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    ordinal = Column(Integer, nullable=True)
    answers = Column(JSONB, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="DRAFT")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<PersonRecordRow(id={self.id}, role={self.role})>"


class BusinessRecordRow(Base):
    """The single answer set of a CORPORATE or TRUST filing."""
    __tablename__ = "business_records"
    __table_args__ = (
        Index("ix_business_records_kind_owner", "kind", "owner_id"),
    )

    id = Column(String(36), primary_key=True)
    filing_id = Column(String(36), ForeignKey("filings.id", ondelete="CASCADE"), nullable=False, unique=True)
    owner_id = Column(String(255), nullable=False)
    kind = Column(String(20), nullable=False)
    answers = Column(JSONB, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="DRAFT")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<BusinessRecordRow(id={self.id}, kind={self.kind})>"

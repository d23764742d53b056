"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Boolean, Column, Integer, String, Text

from app.storage import Base


class Message(Base):
    """
    SQLAlchemy model for outbound messages awaiting (or done with) delivery.

    Table: messages
    Primary Key: id (assigned on insert)
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    to_msisdn = Column(String(32), nullable=False)
    content = Column(Text, nullable=False)
    sent = Column(Boolean, nullable=False, default=False, index=True)
    delivery_id = Column(String(128), nullable=False, default="")
    sent_at = Column(String, nullable=True)  # ISO-8601 UTC string, set when sent
    created_at = Column(String, nullable=False, index=True)  # Server time ISO-8601
    updated_at = Column(String, nullable=False)

    def __repr__(self) -> str:
        return f"<Message id={self.id} to={self.to_msisdn} sent={self.sent}>"

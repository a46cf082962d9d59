"""ORM models for the key pool, its usage log and gateway state."""

from __future__ import annotations

from sqlalchemy import Column, Index, Integer, String

from .database import Base


class ApiKey(Base):
    __tablename__ = "api_keys"

    # Autoincrement id keeps the rotation order stable (insertion order).
    id = Column(Integer, primary_key=True, autoincrement=True)
    api_key = Column(String(512), nullable=False, unique=True)
    total_calls = Column(Integer, nullable=False, default=0, server_default="0")


class ApiKeyUsageLog(Base):
    __tablename__ = "api_key_usage_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    api_key = Column(String(512), nullable=False)
    timestamp = Column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_api_key_usage_logs_key_ts", "api_key", "timestamp"),
        Index("ix_api_key_usage_logs_ts", "timestamp"),
    )


class GatewayState(Base):
    """Durable scalar values, such as the round-robin cursor."""

    __tablename__ = "gateway_state"

    name = Column(String(64), primary_key=True)
    value = Column(Integer, nullable=False, default=0)

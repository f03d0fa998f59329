#backend/app/models/auth.py
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, func, true, false
from app.database import Base


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, server_default=true(), index=True, nullable=False)
    is_verified = Column(Boolean, default=False, server_default=false(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"eager_defaults": True}


class HttpSession(Base):
    """Server-side session row; the cookie only carries the signed key."""
    __tablename__ = "http_sessions"
    id = Column(Integer, primary_key=True)
    key = Column(String(64), unique=True, index=True, nullable=False)
    data = Column(Text, nullable=False, default="{}")
    created_on = Column(DateTime(timezone=True), nullable=False)
    modified_on = Column(DateTime(timezone=True), nullable=False)
    expires_on = Column(DateTime(timezone=True), index=True, nullable=False)

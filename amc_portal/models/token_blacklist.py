from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from amc_portal.db.base_class import Base


class TokenBlacklist(Base):
    """Revoked tokens (by sid/rid/jti) that must no longer be accepted."""

    __tablename__ = "token_blacklist"

    id = Column(Integer, primary_key=True, index=True)
    token_id = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    reason = Column(String(50), nullable=True, default="logout")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

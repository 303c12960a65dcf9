"""Tracked repository model."""

from datetime import datetime
import uuid

from sqlalchemy import Column, DateTime, String, UniqueConstraint, Uuid

from starsync.config.database import Base


class Repository(Base):
    """Repository identity mapped to `repositories` table."""

    __tablename__ = "repositories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner = Column(String(100), nullable=False)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("owner", "name", name="uk_repositories_owner_name"),
    )

    def __repr__(self):
        return f"<Repository {self.owner}/{self.name}>"

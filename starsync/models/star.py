"""Star event model keyed on (repository, stargazer)."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from starsync.config.database import Base


class Star(Base):
    """One stargazer's star on a repository, mapped to `stars` table."""

    __tablename__ = "stars"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    repository_id = Column(Uuid, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False)
    stargazer = Column(String(100), nullable=False)
    starred_at = Column(DateTime, nullable=False)
    observed_at = Column(DateTime, nullable=False)

    repository = relationship("Repository", backref="stars")

    __table_args__ = (
        UniqueConstraint("repository_id", "stargazer", name="uk_stars_repository_stargazer"),
        Index("idx_stars_repository_starred_at", "repository_id", "starred_at"),
    )

    def __repr__(self):
        return f"<Star {self.repository_id}:{self.stargazer}>"

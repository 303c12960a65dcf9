"""Database models"""

from starsync.models.repository import Repository
from starsync.models.star import Star

__all__ = [
    "Repository",
    "Star",
]

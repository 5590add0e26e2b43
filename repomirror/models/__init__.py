"""SQLAlchemy ORM models for RepoMirror."""

from repomirror.models.base import Base
from repomirror.models.clone import RepositoryClone, SyncRun
from repomirror.models.user import PersonalAccessToken, User

__all__ = [
    "Base",
    "PersonalAccessToken",
    "RepositoryClone",
    "SyncRun",
    "User",
]

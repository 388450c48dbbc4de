"""User Repository for the CleanOps backend."""

from sqlalchemy.orm import Session

from ..models.user import User
from .base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    """Client and cleaner lookups; user management itself lives outside this service."""

    def __init__(self, db: Session):
        super().__init__(db, User)

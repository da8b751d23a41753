from typing import Optional

from keeva.domain.models import User
from keeva.infrastructure.database import SessionLocal


class SqlAlchemyUserRepository:
    """Read access to users and their address book (profile CRUD lives elsewhere)."""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def get(self, user_id: str) -> Optional[User]:
        session = self.session_factory()
        try:
            # addresses are selectin-loaded, so they survive the session
            return session.get(User, user_id)
        finally:
            session.close()

    def add(self, user: User) -> User:
        session = self.session_factory()
        try:
            session.add(user)
            session.commit()
            session.refresh(user)
            return user
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

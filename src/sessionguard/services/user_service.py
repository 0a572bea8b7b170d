"""User store — identity records consumed by the auth orchestrator."""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sessionguard.db.models import Role, User
from sessionguard.db.timeout import bounded


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserStore:
    def __init__(self, db: AsyncSession, timeout: float = 5.0):
        self.db = db
        self.timeout = timeout

    async def get(self, user_id: uuid.UUID) -> Optional[User]:
        return await bounded(self.db.get(User, user_id), self.timeout)

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await bounded(
            self.db.execute(select(User).where(User.email == normalize_email(email))),
            self.timeout,
        )
        return result.scalars().first()

    async def lock(self, user_id: uuid.UUID) -> Optional[User]:
        """SELECT ... FOR UPDATE on the user row.

        Serializes session creation per user on PostgreSQL; a no-op on
        SQLite, which has no row locks.
        """
        result = await bounded(
            self.db.execute(
                select(User)
                .where(User.id == user_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ),
            self.timeout,
        )
        return result.scalars().first()

    async def create(
        self,
        email: str,
        password_hash: str,
        name: str,
        role: Role = Role.USER,
    ) -> User:
        """Insert a user. Raises IntegrityError if the email is taken."""
        user = User(
            email=normalize_email(email),
            password_hash=password_hash,
            name=name,
            role=Role(role).value,
        )
        self.db.add(user)
        await bounded(self.db.flush(), self.timeout)
        return user

    async def set_password_hash(self, user: User, password_hash: str) -> None:
        user.password_hash = password_hash
        await bounded(self.db.flush(), self.timeout)

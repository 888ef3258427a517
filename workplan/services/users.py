from typing import List

from sqlalchemy import or_

from ..errors import BusinessRuleError, NotFoundError
from ..models import models
from ..schemas.users import User
from .store import TenantRegistry


class UserDirectory:
    """User lookups for the planning core, always scoped to one group."""

    def __init__(self, registry: TenantRegistry):
        self.registry = registry

    async def find_user_by_id(self, user_id: str, group: str) -> User:
        return await self.registry.store_for(group).find_by_id(User, user_id)

    async def find_users_by_ids(self, ids: List[str], group: str) -> List[User]:
        return await self.registry.store_for(group).find_by_ids(User, ids)

    async def find_user_by_username_or_email(self, identifier: str, group: str) -> User:
        users = await self.registry.store_for(group).find_many(
            User,
            where=or_(models.User.username == identifier, models.User.email == identifier),
        )
        if not users:
            raise NotFoundError(f"user {identifier} not found")
        return users[0]

    async def save_user(self, user: User, group: str) -> User:
        await self.registry.store_for(group).upsert(user)
        return user

    async def require_workers(self, ids: List[str], group: str) -> List[User]:
        """
        Fetch every employee in one lookup and reject the set unless all of
        them exist, are enabled and hold the worker role.
        """
        if not ids:
            return []
        users = await self.find_users_by_ids(ids, group)
        if len(users) != len(ids):
            raise BusinessRuleError("could not retrieve all employees")
        for user in users:
            if not user.is_worker:
                raise BusinessRuleError("user is not enabled or doesn't have the proper role")
        return users

"""User persistence consumed by the auth service.

The auth layer only needs lookups by id, username, email or either, user
creation, credential reads/writes, a last-login update and the email
verification and two-factor flags. `BeanieUserRepository`
implements them on MongoDB.
"""

import pytz
import logfire

from abc import ABC, abstractmethod

from datetime import datetime

from typing import Optional

from beanie import PydanticObjectId
from beanie.operators import Or, Set
from bson.errors import InvalidId

from pymongo.errors import ConnectionFailure, DuplicateKeyError, ExecutionTimeout

from models.users import User, UserCredential
from schema.users import UserRecord
from security.errors import EmailExists, RepositoryUnavailable, UsernameExists


class UserRepository(ABC):
    """Lookup/create/update operations over user identity records."""

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def get_by_username(self, username: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def find_active_by_identifier(self, identifier: str) -> Optional[UserRecord]:
        """Find an active user whose username or email equals `identifier`."""

    @abstractmethod
    async def create(
        self,
        username: str,
        email: str,
        password_hash: str,
        display_name: Optional[str] = None,
        bio: Optional[str] = None,
    ) -> UserRecord:
        """Create a user and its credential.

        Raises:
            UsernameExists: If the username is already taken.
            EmailExists: If the email is already taken.
        """

    @abstractmethod
    async def get_password_hash(self, user_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set_password_hash(self, user_id: str, password_hash: str) -> None:
        ...

    @abstractmethod
    async def record_login(self, user_id: str, logged_in_at: datetime) -> None:
        ...

    @abstractmethod
    async def mark_verified(self, user_id: str) -> None:
        ...

    @abstractmethod
    async def get_totp_secret(self, user_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set_two_factor(self, user_id: str, totp_secret: Optional[str]) -> None:
        """Store `totp_secret` and turn 2FA on, or clear it and turn 2FA off when None."""


def _to_record(user: User) -> UserRecord:
    return UserRecord.model_validate({**user.model_dump(), "id": str(user.id)})


def _to_object_id(user_id: str) -> Optional[PydanticObjectId]:
    try:
        return PydanticObjectId(user_id)
    except (InvalidId, TypeError):
        return None


class BeanieUserRepository(UserRepository):
    """MongoDB implementation backed by the `User` and `UserCredential` documents."""

    async def get_by_id(self, user_id: str) -> Optional[UserRecord]:
        object_id = _to_object_id(user_id)
        if object_id is None:
            return None
        try:
            user = await User.get(object_id)
        except (ConnectionFailure, ExecutionTimeout) as e:
            logfire.error(f"Database error fetching user {user_id}: {str(e)}")
            raise RepositoryUnavailable() from e
        return _to_record(user) if user else None

    async def get_by_username(self, username: str) -> Optional[UserRecord]:
        try:
            user = await User.find_one(User.username == username)
        except (ConnectionFailure, ExecutionTimeout) as e:
            logfire.error(f"Database error fetching user {username}: {str(e)}")
            raise RepositoryUnavailable() from e
        return _to_record(user) if user else None

    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        try:
            user = await User.find_one(User.email == email)
        except (ConnectionFailure, ExecutionTimeout) as e:
            logfire.error(f"Database error fetching user by email: {str(e)}")
            raise RepositoryUnavailable() from e
        return _to_record(user) if user else None

    async def find_active_by_identifier(self, identifier: str) -> Optional[UserRecord]:
        try:
            user = await User.find_one(
                Or(User.username == identifier, User.email == identifier),
                User.is_active == True,  # noqa: E712
            )
        except (ConnectionFailure, ExecutionTimeout) as e:
            logfire.error(f"Database error looking up identifier {identifier}: {str(e)}")
            raise RepositoryUnavailable() from e
        return _to_record(user) if user else None

    async def create(
        self,
        username: str,
        email: str,
        password_hash: str,
        display_name: Optional[str] = None,
        bio: Optional[str] = None,
    ) -> UserRecord:
        new_user = User(
            username=username,
            email=email,
            display_name=display_name,
            bio=bio,
            is_active=True,
        )

        try:
            await new_user.insert()
        except DuplicateKeyError as e:
            key_pattern = (e.details or {}).get("keyPattern", {})
            logfire.warning(f"Attempt to create duplicate user: {username}")
            if "email" in key_pattern:
                raise EmailExists() from e
            raise UsernameExists() from e
        except (ConnectionFailure, ExecutionTimeout) as e:
            logfire.error(f"Database error creating user {username}: {str(e)}")
            raise RepositoryUnavailable() from e

        try:
            await UserCredential(user_id=new_user.id, password_hash=password_hash).insert()
        except Exception:
            # No multi-document transaction without a replica set, undo by hand
            await new_user.delete()
            raise

        logfire.info(f"Saved new user to database: {username} ({str(new_user.id)})")
        return _to_record(new_user)

    async def get_password_hash(self, user_id: str) -> Optional[str]:
        object_id = _to_object_id(user_id)
        if object_id is None:
            return None
        try:
            credential = await UserCredential.find_one(UserCredential.user_id == object_id)
        except (ConnectionFailure, ExecutionTimeout) as e:
            logfire.error(f"Database error fetching credential for {user_id}: {str(e)}")
            raise RepositoryUnavailable() from e
        return credential.password_hash if credential else None

    async def set_password_hash(self, user_id: str, password_hash: str) -> None:
        object_id = _to_object_id(user_id)
        if object_id is None:
            raise ValueError(f"Invalid user id: {user_id}")

        now = datetime.now(pytz.utc)
        try:
            credential = await UserCredential.find_one(UserCredential.user_id == object_id)
            if credential is None:
                await UserCredential(user_id=object_id, password_hash=password_hash).insert()
                return
            credential.password_hash = password_hash
            credential.updated_at = now
            await credential.save()
        except (ConnectionFailure, ExecutionTimeout) as e:
            logfire.error(f"Database error updating credential for {user_id}: {str(e)}")
            raise RepositoryUnavailable() from e

    async def record_login(self, user_id: str, logged_in_at: datetime) -> None:
        object_id = _to_object_id(user_id)
        if object_id is None:
            return
        try:
            await User.find_one(User.id == object_id).update(
                Set({User.last_login_at: logged_in_at, User.updated_at: logged_in_at})
            )
        except (ConnectionFailure, ExecutionTimeout) as e:
            logfire.error(f"Database error recording login for {user_id}: {str(e)}")
            raise RepositoryUnavailable() from e

    async def mark_verified(self, user_id: str) -> None:
        object_id = _to_object_id(user_id)
        if object_id is None:
            return
        try:
            await User.find_one(User.id == object_id).update(
                Set({User.is_verified: True, User.updated_at: datetime.now(pytz.utc)})
            )
        except (ConnectionFailure, ExecutionTimeout) as e:
            logfire.error(f"Database error verifying email for {user_id}: {str(e)}")
            raise RepositoryUnavailable() from e

    async def get_totp_secret(self, user_id: str) -> Optional[str]:
        object_id = _to_object_id(user_id)
        if object_id is None:
            return None
        try:
            credential = await UserCredential.find_one(UserCredential.user_id == object_id)
        except (ConnectionFailure, ExecutionTimeout) as e:
            logfire.error(f"Database error fetching TOTP secret for {user_id}: {str(e)}")
            raise RepositoryUnavailable() from e
        return credential.totp_secret if credential else None

    async def set_two_factor(self, user_id: str, totp_secret: Optional[str]) -> None:
        object_id = _to_object_id(user_id)
        if object_id is None:
            raise ValueError(f"Invalid user id: {user_id}")

        now = datetime.now(pytz.utc)
        try:
            await UserCredential.find_one(UserCredential.user_id == object_id).update(
                Set({UserCredential.totp_secret: totp_secret, UserCredential.updated_at: now})
            )
            await User.find_one(User.id == object_id).update(
                Set({User.two_factor_enabled: totp_secret is not None, User.updated_at: now})
            )
        except (ConnectionFailure, ExecutionTimeout) as e:
            logfire.error(f"Database error updating 2FA for {user_id}: {str(e)}")
            raise RepositoryUnavailable() from e

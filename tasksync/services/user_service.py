"""User operations (upsert on login)."""

import logging
from datetime import datetime
from typing import NamedTuple, Optional

from tasksync.database.store import DocumentStore
from tasksync.errors import AlreadyExists, StoreUnavailable, TaskSyncError
from tasksync.models.constants import USERS_COLLECTION
from tasksync.models.user import User
from tasksync.services.task_service import require_fields

logger = logging.getLogger(__name__)


class LoginResult(NamedTuple):
    """Outcome of a login: whether the user is new, and the resulting record."""
    created: bool
    user: User


class UserService:
    """Service for User records keyed by externalId."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, external_id: str) -> Optional[User]:
        """Get user by externalId."""
        document = await self.store.find_one(USERS_COLLECTION, {"externalId": external_id})
        return User.from_document(document) if document else None

    async def record_login(
        self,
        external_id: Optional[str],
        email: Optional[str],
        display_name: Optional[str],
    ) -> LoginResult:
        """Create or update a user on login (upsert).

        A new user gets `createdAt = lastLogin = now`. An existing user gets
        its email, display name and `lastLogin` refreshed; `createdAt` stays.

        Args:
            external_id: Identity provider user id
            email: User email address
            display_name: User display name

        Returns:
            LoginResult telling "created" apart from "already existed"

        Raises:
            ValidationError: If any input is missing or empty
            StoreUnavailable: If the store read or write fails
        """
        require_fields(externalId=external_id, email=email, displayName=display_name)
        now = datetime.utcnow()

        try:
            existing = await self.store.find_one(USERS_COLLECTION, {"externalId": external_id})
            if existing:
                return await self._refresh(existing, email, display_name, now)

            document = {
                "externalId": external_id,
                "email": email,
                "displayName": display_name,
                "createdAt": now,
                "lastLogin": now,
            }
            try:
                await self.store.insert(USERS_COLLECTION, document)
            except AlreadyExists:
                # A concurrent first login created the record between our read and write
                existing = await self.store.find_one(USERS_COLLECTION, {"externalId": external_id})
                if not existing:
                    raise
                logger.debug(f"User {external_id} was created concurrently, updating instead")
                return await self._refresh(existing, email, display_name, now)
            logger.debug(f"Created user {external_id}: {email}")
            return LoginResult(created=True, user=User.from_document(document))
        except TaskSyncError:
            raise
        except Exception as e:
            logger.error(f"Failed to store user {external_id}: {type(e).__name__}: {str(e)}")
            raise StoreUnavailable("Failed to store user") from e

    async def _refresh(self, existing, email: str, display_name: str, now: datetime) -> LoginResult:
        patch = {"email": email, "displayName": display_name, "lastLogin": now}
        await self.store.update_one(USERS_COLLECTION, existing["_id"], patch)
        logger.debug(f"Updated user {existing['externalId']}: {email}")
        return LoginResult(created=False, user=User.from_document({**existing, **patch}))

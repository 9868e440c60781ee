"""
User directory: the minimum of user data the credit flows need, namely the
owner's e-mail address for payment notifications.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import NotFoundError, ValidationError


@dataclass
class User(StorageRecord):
    username: str
    email: str


class UserDirectory:

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "users"

    def create_user(self, username: str, email: str) -> User:
        if not username:
            raise ValidationError("Username is required")
        if "@" not in email:
            raise ValidationError(f"Invalid e-mail address: {email}")

        now = datetime.now(timezone.utc)
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            username=username,
            email=email
        )

        with self.storage.atomic():
            self.storage.insert(self.table_name, user.id, user.to_dict())
            self.audit_trail.log_event(
                event_type=AuditEventType.USER_CREATED,
                entity_type="user",
                entity_id=user.id,
                metadata={"username": username}
            )
        return user

    def get_user(self, user_id: str) -> User:
        """Get user by ID, raising NotFoundError if absent"""
        data = self.storage.load(self.table_name, user_id)
        if not data:
            raise NotFoundError(f"User {user_id} not found")
        return self._user_from_dict(data)

    def _user_from_dict(self, data: Dict) -> User:
        return User.from_dict(dict(data))

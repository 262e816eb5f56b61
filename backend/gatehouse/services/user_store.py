"""
Gatehouse Backend: In-Memory User Store
=======================================

What:  Credential lookup and user records for the auth and user routes.
Why:   The pipeline only needs "find a credential by identifier"; the real
       ORM repository lives outside this service. This store implements the
       same repository interface in memory so the API is usable and testable
       on its own.
How:   Dict keyed by user id plus an email index, guarded by a lock.
"""

import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from gatehouse.exceptions import ConflictError


@dataclass(frozen=True)
class Credential:
    """What the login flow needs: an identifier and a stored password hash."""

    identifier: str
    password_hash: Optional[str]


@dataclass(frozen=True)
class User:
    id: str
    name: str
    email: str
    password_hash: Optional[str]
    created_at: datetime
    updated_at: datetime

    @property
    def credential(self) -> Credential:
        return Credential(identifier=self.email, password_hash=self.password_hash)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class UserStore:
    """Thread-safe in-memory user repository."""

    def __init__(self):
        self._users: Dict[str, User] = {}
        self._by_email: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get_credential(self, identifier: str) -> Optional[Credential]:
        user = self.find_by_email(identifier)
        return user.credential if user else None

    def find_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            user_id = self._by_email.get(_normalize_email(email))
            return self._users.get(user_id) if user_id else None

    def find_by_id(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def list_all(self) -> List[User]:
        with self._lock:
            return sorted(self._users.values(), key=lambda u: u.created_at)

    def create(self, name: str, email: str, password_hash: Optional[str] = None) -> User:
        """
        Insert a new user.

        Raises:
            ConflictError: a user with this email already exists.
        """
        key = _normalize_email(email)
        now = datetime.now(timezone.utc)
        with self._lock:
            if key in self._by_email:
                raise ConflictError("User with this email already exists", context={"field": "email"})
            user = User(
                id=str(uuid.uuid4()),
                name=name,
                email=email.strip(),
                password_hash=password_hash,
                created_at=now,
                updated_at=now,
            )
            self._users[user.id] = user
            self._by_email[key] = user.id
        return user

    def update(
        self,
        user_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password_hash: Optional[str] = None,
    ) -> Optional[User]:
        """Apply the given changes. Returns None if the user does not exist."""
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            changes = {}
            if name is not None:
                changes["name"] = name
            if email is not None:
                new_key = _normalize_email(email)
                owner = self._by_email.get(new_key)
                if owner is not None and owner != user_id:
                    raise ConflictError("User with this email already exists", context={"field": "email"})
                del self._by_email[_normalize_email(user.email)]
                self._by_email[new_key] = user_id
                changes["email"] = email.strip()
            if password_hash is not None:
                changes["password_hash"] = password_hash
            updated = replace(user, updated_at=datetime.now(timezone.utc), **changes)
            self._users[user_id] = updated
        return updated

    def delete(self, user_id: str) -> bool:
        with self._lock:
            user = self._users.pop(user_id, None)
            if user is None:
                return False
            self._by_email.pop(_normalize_email(user.email), None)
        return True

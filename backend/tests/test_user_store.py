"""
Gatehouse Backend: User Store Unit Tests
========================================

What:  Tests for the in-memory user repository behind the auth and user routes.
"""

import pytest

from gatehouse.exceptions import ConflictError
from gatehouse.services.user_store import UserStore


@pytest.fixture
def store():
    return UserStore()


class TestCreateAndFind:
    def test_create_assigns_id_and_timestamps(self, store):
        user = store.create("Alice", "alice@example.com", "salt$digest")
        assert user.id
        assert user.created_at == user.updated_at
        assert store.find_by_id(user.id) == user

    def test_email_lookup_is_case_insensitive(self, store):
        user = store.create("Alice", "Alice@Example.com")
        assert store.find_by_email("alice@example.com") == user

    def test_duplicate_email_conflicts(self, store):
        store.create("Alice", "alice@example.com")
        with pytest.raises(ConflictError) as exc_info:
            store.create("Other", "ALICE@example.com")
        assert exc_info.value.status_code == 400

    def test_get_credential(self, store):
        store.create("Alice", "alice@example.com", "salt$digest")
        credential = store.get_credential("alice@example.com")
        assert credential.identifier == "alice@example.com"
        assert credential.password_hash == "salt$digest"
        assert store.get_credential("nobody@example.com") is None

    def test_list_all_in_creation_order(self, store):
        first = store.create("A", "a@example.com")
        second = store.create("B", "b@example.com")
        assert [u.id for u in store.list_all()] == [first.id, second.id]


class TestUpdateAndDelete:
    def test_update_changes_fields(self, store):
        user = store.create("Alice", "alice@example.com")
        updated = store.update(user.id, name="Alicia", email="alicia@example.com")

        assert updated.name == "Alicia"
        assert store.find_by_email("alicia@example.com") == updated
        assert store.find_by_email("alice@example.com") is None

    def test_update_missing_user_returns_none(self, store):
        assert store.update("missing", name="X") is None

    def test_update_to_taken_email_conflicts(self, store):
        store.create("Alice", "alice@example.com")
        bob = store.create("Bob", "bob@example.com")
        with pytest.raises(ConflictError):
            store.update(bob.id, email="alice@example.com")

    def test_update_keeping_own_email(self, store):
        user = store.create("Alice", "alice@example.com")
        assert store.update(user.id, email="ALICE@example.com").email == "ALICE@example.com"

    def test_delete(self, store):
        user = store.create("Alice", "alice@example.com")
        assert store.delete(user.id) is True
        assert store.delete(user.id) is False
        assert store.find_by_email("alice@example.com") is None

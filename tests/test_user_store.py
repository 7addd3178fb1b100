"""Unit tests for identity/store.py -- UserStore persistence.

Covers:
- create_user() with and without a credentials row
- lookups by id and email, with and without credentials
- list_users() filters: name/email OR, updated_since lower bound, id set, pagination
- update_user() field merge and credential create/update in one write
- soft_delete_user() redaction and credential removal
- writes to a soft-deleted row raise UserDeleted and change nothing
- duplicate email -> IntegrityError; field whitelist
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from identity.errors import UserDeleted
from identity.models import NewUser, UserQuery
from identity.store import UserStore, _credentials, _users

HASHED = "$2b$04$abcdefghijklmnopqrstuuQ0q3cT0Zt3Zx7m6xq7iWlq1r0cS7xHe"


def _new(name: str, email: str, is_admin: bool = False) -> NewUser:
    return NewUser(name=name, email=email, password=HASHED, is_admin=is_admin)


def _credential_rows(store: UserStore) -> int:
    with store.engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(_credentials)).scalar()


@pytest.fixture
def populated(store: UserStore) -> UserStore:
    """Store with four users: alice, bob (with credentials), carol (admin), dave."""
    store.create_user(_new("Alice Liddell", "alice@example.com"))
    store.create_user(_new("Bob Builder", "bob@builders.org"), "HS256")
    store.create_user(_new("Carol Admin", "carol@example.com", is_admin=True))
    store.create_user(_new("Dave", "dave@alice-fans.net"))
    return store


# ---------------------------------------------------------------------------
# Create and read
# ---------------------------------------------------------------------------


class TestCreateAndGet:
    def test_create_without_credentials(self, store: UserStore) -> None:
        user = store.create_user(_new("Ada", "ada@example.com"))
        assert user.id is not None
        assert user.credentials_id is None
        assert user.credentials is None
        assert user.is_deleted is False
        assert user.email_confirmed is False
        assert user.created_at == user.updated_at
        assert _credential_rows(store) == 0

    def test_create_with_credentials(self, store: UserStore) -> None:
        user = store.create_user(_new("Ada", "ada@example.com"), "HS256")
        assert user.credentials_id is not None
        assert user.credentials.hash == "HS256"
        assert _credential_rows(store) == 1

    def test_get_by_id_credentials_only_when_requested(self, store: UserStore) -> None:
        created = store.create_user(_new("Ada", "ada@example.com"), "HS256")
        assert store.get_user_by_id(created.id).credentials is None
        assert store.get_user_by_id(created.id, include_credentials=True).credentials.hash == "HS256"
        assert store.get_user_by_id(created.id).credentials_id == created.credentials_id

    def test_get_by_email(self, populated: UserStore) -> None:
        user = populated.get_user_by_email("bob@builders.org", include_credentials=True)
        assert user.name == "Bob Builder"
        assert user.credentials.hash == "HS256"

    def test_missing_lookups_return_none(self, store: UserStore) -> None:
        assert store.get_user_by_id(12345) is None
        assert store.get_user_by_email("nobody@example.com") is None
        assert store.get_user_by_email("") is None

    def test_duplicate_email_raises_and_writes_nothing(self, store: UserStore) -> None:
        store.create_user(_new("Ada", "ada@example.com"))
        with pytest.raises(IntegrityError):
            store.create_user(_new("Other Ada", "ada@example.com"), "HS256")
        # The credentials insert shared the failed transaction
        assert _credential_rows(store) == 0

    def test_has_users(self, store: UserStore) -> None:
        assert store.has_users() is False
        store.create_user(_new("Ada", "ada@example.com"))
        assert store.has_users() is True


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListUsers:
    def test_no_filter_returns_all_in_id_order(self, populated: UserStore) -> None:
        users = populated.list_users(UserQuery())
        assert [u.name for u in users] == ["Alice Liddell", "Bob Builder", "Carol Admin", "Dave"]

    def test_name_and_email_are_ored(self, populated: UserStore) -> None:
        users = populated.list_users(UserQuery(name="Alice", email="builders"))
        assert {u.name for u in users} == {"Alice Liddell", "Bob Builder"}

    def test_email_substring(self, populated: UserStore) -> None:
        users = populated.list_users(UserQuery(email="alice"))
        assert {u.email for u in users} == {"alice@example.com", "dave@alice-fans.net"}

    def test_wildcards_are_literal(self, populated: UserStore) -> None:
        assert populated.list_users(UserQuery(name="%")) == []

    def test_id_set(self, populated: UserStore) -> None:
        all_users = populated.list_users(UserQuery())
        wanted = [all_users[0].id, all_users[2].id]
        users = populated.list_users(UserQuery(ids=wanted))
        assert [u.id for u in users] == wanted

    def test_id_set_anded_with_text_match(self, populated: UserStore) -> None:
        all_users = populated.list_users(UserQuery())
        users = populated.list_users(UserQuery(ids=[all_users[0].id], email="alice"))
        assert [u.email for u in users] == ["alice@example.com"]

    def test_updated_since_is_inclusive(self, populated: UserStore) -> None:
        target = populated.list_users(UserQuery())[1]
        since = datetime.fromisoformat(target.updated_at)
        users = populated.list_users(UserQuery(updated_since=since))
        assert target.id in [u.id for u in users]
        assert all(u.updated_at >= target.updated_at for u in users)

    def test_updated_since_in_future_matches_nothing(self, populated: UserStore) -> None:
        future = datetime.now(timezone.utc) + timedelta(days=1)
        assert populated.list_users(UserQuery(updated_since=future)) == []

    def test_naive_updated_since_treated_as_utc(self, populated: UserStore) -> None:
        past = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=1)
        assert len(populated.list_users(UserQuery(updated_since=past))) == 4

    def test_pagination(self, populated: UserStore) -> None:
        page = populated.list_users(UserQuery(limit=2, offset=1))
        assert [u.name for u in page] == ["Bob Builder", "Carol Admin"]

    def test_credentials_projection(self, populated: UserStore) -> None:
        with_creds = populated.list_users(UserQuery(name="Bob", credentials=True))
        without = populated.list_users(UserQuery(name="Bob"))
        assert with_creds[0].credentials.hash == "HS256"
        assert without[0].credentials is None


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


class TestUpdateUser:
    def test_field_merge_bumps_updated_at(self, store: UserStore) -> None:
        created = store.create_user(_new("Ada", "ada@example.com"))
        updated = store.update_user(created.id, {"name": "Ada L.", "email_confirmed": True})
        assert updated.name == "Ada L."
        assert updated.email_confirmed is True
        assert updated.email == "ada@example.com"
        assert updated.updated_at > created.updated_at
        assert updated.created_at == created.created_at

    def test_credential_create(self, store: UserStore) -> None:
        created = store.create_user(_new("Ada", "ada@example.com"))
        updated = store.update_user(created.id, {}, "HS512")
        assert updated.credentials.hash == "HS512"
        assert _credential_rows(store) == 1

    def test_credential_update_in_place(self, store: UserStore) -> None:
        created = store.create_user(_new("Ada", "ada@example.com"), "HS256")
        updated = store.update_user(created.id, {}, "HS384")
        assert updated.credentials_id == created.credentials_id
        assert updated.credentials.hash == "HS384"
        assert _credential_rows(store) == 1

    def test_repeated_credential_writes_keep_single_row(self, store: UserStore) -> None:
        created = store.create_user(_new("Ada", "ada@example.com"), "HS256")
        updated = store.update_user(created.id, {}, "HS512")
        assert updated.credentials_id == created.credentials_id
        assert _credential_rows(store) == 1

    def test_missing_user_returns_none(self, store: UserStore) -> None:
        assert store.update_user(999, {"name": "x"}) is None

    def test_unknown_field_rejected(self, store: UserStore) -> None:
        created = store.create_user(_new("Ada", "ada@example.com"))
        with pytest.raises(ValueError):
            store.update_user(created.id, {"is_deleted": False})
        with pytest.raises(ValueError):
            store.update_user(created.id, {"id": 5})


# ---------------------------------------------------------------------------
# Soft delete
# ---------------------------------------------------------------------------


class TestSoftDelete:
    def test_redacts_and_removes_credentials(self, store: UserStore) -> None:
        created = store.create_user(_new("Ada", "ada@example.com"), "HS256")
        deleted = store.soft_delete_user(created.id, deleted_name="(gone)")
        assert deleted.is_deleted is True
        assert deleted.name == "(gone)"
        assert deleted.email is None
        assert deleted.credentials_id is None
        assert deleted.id == created.id
        assert _credential_rows(store) == 0

    def test_row_is_retained(self, store: UserStore) -> None:
        created = store.create_user(_new("Ada", "ada@example.com"))
        store.soft_delete_user(created.id)
        kept = store.get_user_by_id(created.id)
        assert kept is not None
        assert kept.name == "(deleted)"
        assert store.get_user_by_email("ada@example.com") is None

    def test_email_is_freed_for_new_account(self, store: UserStore) -> None:
        created = store.create_user(_new("Ada", "ada@example.com"))
        store.soft_delete_user(created.id)
        again = store.create_user(_new("Ada Again", "ada@example.com"))
        assert again.id != created.id

    def test_missing_user_returns_none(self, store: UserStore) -> None:
        assert store.soft_delete_user(999) is None

    def test_repeated_delete_rejected(self, store: UserStore) -> None:
        created = store.create_user(_new("Ada", "ada@example.com"))
        first = store.soft_delete_user(created.id)
        with pytest.raises(UserDeleted):
            store.soft_delete_user(created.id, deleted_name="(again)")
        assert store.get_user_by_id(created.id).updated_at == first.updated_at
        assert store.get_user_by_id(created.id).name == "(deleted)"


class TestDeletedIsTerminal:
    def test_update_of_deleted_row_rejected(self, store: UserStore) -> None:
        created = store.create_user(_new("Ada", "ada@example.com"), "HS256")
        store.soft_delete_user(created.id)
        with pytest.raises(UserDeleted):
            store.update_user(created.id, {"name": "Back"}, "HS512")
        after = store.get_user_by_id(created.id, include_credentials=True)
        assert after.name == "(deleted)"
        assert after.credentials_id is None
        assert after.credentials is None
        assert _credential_rows(store) == 0

    def test_write_guard_catches_delete_after_read(self, store: UserStore, monkeypatch: pytest.MonkeyPatch) -> None:
        """A delete that commits after the row was read still blocks the write."""
        created = store.create_user(_new("Ada", "ada@example.com"))
        with store.engine.connect() as conn:
            stale = conn.execute(
                select(_users.c.id, _users.c.is_deleted, _users.c.credentials_id).where(_users.c.id == created.id)
            ).fetchone()
        store.soft_delete_user(created.id)
        monkeypatch.setattr(store, "_lock_live_row", lambda conn, user_id: stale)

        with pytest.raises(UserDeleted):
            store.update_user(created.id, {"name": "Back"}, "HS512")
        after = store.get_user_by_id(created.id, include_credentials=True)
        assert after.name == "(deleted)"
        assert after.credentials is None
        # the credentials insert was rolled back with the rejected write
        assert _credential_rows(store) == 0

    def test_database_url_is_required(self) -> None:
        with pytest.raises(TypeError):
            UserStore()

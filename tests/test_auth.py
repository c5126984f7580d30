"""Tests for signup/login against both stores."""

import pytest

from arcadehub.auth import BAD_CREDENTIALS, Auth
from arcadehub.errors import AuthError, NotAuthenticatedError, UsernameExistsError, ValidationError
from arcadehub.storage.sqlite import RelationalStore


@pytest.fixture
def auth(records, sql) -> Auth:
    return Auth(records, sql)


@pytest.mark.parametrize(
    "display_name, username, email, password, message",
    [
        ("A", "alice", "", "secret1", "Display name must be at least 2 characters"),
        ("Alice", "al", "", "secret1", "Username must be at least 3 characters"),
        ("Alice", "al ice", "", "secret1", "Username can only contain letters, numbers, and underscores"),
        ("Alice", "alice", "", "12345", "Password must be at least 6 characters"),
        ("Alice", "alice", "not-an-email", "secret1", "Please enter a valid email address"),
    ],
)
async def test_signup_validation(auth, display_name, username, email, password, message):
    with pytest.raises(ValidationError, match=message):
        auth.signup(display_name, username, email, password)


async def test_signup_password_confirmation(auth):
    with pytest.raises(ValidationError, match="Passwords do not match"):
        auth.signup("Alice", "alice", "", "secret1", confirm_password="secret2")


async def test_signup_creates_user_in_both_stores(auth, records, sql):
    user = auth.signup("Alice", "Alice_1", "alice@example.com", "secret1")
    assert user["username"] == "alice_1"
    assert records.get_user_by_username("ALICE_1")["email"] == "alice@example.com"
    assert sql.get_user("ALICE_1").value["displayName"] == "Alice"
    assert auth.current_user()["username"] == "alice_1"


async def test_signup_rejects_username_known_only_to_database(auth, sql):
    sql.insert_user({"username": "remote_bob", "password": "pw1234", "displayName": "Bob"})
    with pytest.raises(UsernameExistsError, match="Username already taken"):
        auth.signup("Bob", "Remote_Bob", "", "secret1")


async def test_signup_without_database(records, config):
    auth = Auth(records, RelationalStore(records, config))
    auth.signup("Alice", "alice", "", "secret1")
    assert records.get_user_by_username("alice")


async def test_login_does_not_reveal_which_part_was_wrong(auth):
    auth.signup("Alice", "alice", "", "secret1")
    auth.logout()
    with pytest.raises(AuthError) as wrong_pw:
        auth.login("alice", "nope")
    with pytest.raises(AuthError) as no_user:
        auth.login("nobody", "nope")
    assert str(wrong_pw.value) == str(no_user.value) == BAD_CREDENTIALS
    assert not auth.is_logged_in()


async def test_login_requires_both_fields(auth):
    with pytest.raises(ValidationError):
        auth.login("", "x")


async def test_login_is_case_insensitive(auth):
    auth.signup("Alice", "alice", "", "secret1")
    auth.logout()
    assert auth.login("ALICE", "secret1")["username"] == "alice"
    assert auth.is_logged_in()


async def test_login_from_database_materializes_local_user(records, sql):
    notes = []
    auth = Auth(records, sql, notify=lambda message, level: notes.append(level))
    sql.insert_user({"username": "carol", "password": "secret9", "displayName": "Carol", "isAdmin": True})

    with pytest.raises(AuthError):
        auth.login("carol", "wrong")
    assert records.get_user_by_username("carol") is None

    user = auth.login("Carol", "secret9")
    assert user["displayName"] == "Carol"
    assert user["isAdmin"] is True
    assert records.get_user_by_username("carol")
    assert auth.is_admin()
    assert notes == ["success"]


async def test_login_demo(auth, config):
    user = auth.login_demo()
    assert user["username"] == config.default_demo.username
    assert not auth.is_admin()


async def test_login_demo_recreates_missing_demo(auth, records, config):
    users = records.get_users()
    users.pop(config.default_demo.username)
    records.put(config.users_key, users)
    assert auth.login_demo()["username"] == config.default_demo.username


async def test_update_profile_mirrors_to_database(auth, records, sql):
    auth.signup("Alice", "alice", "", "secret1")
    updated = auth.update_profile({"displayName": "Alice B", "email": "b@x.io", "isAdmin": True})
    assert updated["displayName"] == "Alice B"
    assert updated["isAdmin"] is False
    assert sql.get_user("alice").value["email"] == "b@x.io"


async def test_update_profile_requires_session(auth):
    with pytest.raises(NotAuthenticatedError):
        auth.update_profile({"displayName": "Nobody"})

"""Signup, login and profile updates against both stores."""

from __future__ import annotations

import logging
import re
from typing import Any, Callable

from arcadehub.errors import AuthError, NotAuthenticatedError, UsernameExistsError, ValidationError
from arcadehub.storage.records import LocalRecordStore
from arcadehub.storage.sqlite import RelationalStore

log = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]+$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

BAD_CREDENTIALS = "Incorrect username or password"

Notifier = Callable[[str, str], None]


def validate_signup(display_name: str, username: str, email: str, password: str) -> None:
    if not display_name or len(display_name) < 2:
        raise ValidationError("Display name must be at least 2 characters")
    if not username or len(username) < 3:
        raise ValidationError("Username must be at least 3 characters")
    if not USERNAME_RE.match(username):
        raise ValidationError("Username can only contain letters, numbers, and underscores")
    if not password or len(password) < 6:
        raise ValidationError("Password must be at least 6 characters")
    if email and not EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid email address")


class Auth:
    def __init__(self, records: LocalRecordStore, sql: RelationalStore, notify: Notifier | None = None):
        self.records = records
        self.sql = sql
        self.notify = notify or (lambda message, level: None)

    def signup(
        self,
        display_name: str,
        username: str,
        email: str,
        password: str,
        confirm_password: str | None = None,
    ) -> dict[str, Any]:
        validate_signup(display_name, username, email, password)
        if confirm_password is not None and confirm_password != password:
            raise ValidationError("Passwords do not match")
        if self.records.get_user_by_username(username):
            raise UsernameExistsError("Username already taken")
        if self.sql.username_exists(username).unwrap_or(False):
            raise UsernameExistsError("Username already taken")

        user = self.records.create_user(username, display_name, password, email=email)
        if self.sql.is_ready:
            res = self.sql.insert_user(user)
            if not res.ok:
                log.warning("user %s not mirrored to database: %s", user["username"], res.reason)

        self.records.set_current_user(user["username"])
        return user

    def login(self, username: str, password: str) -> dict[str, Any]:
        if not username or not password:
            raise ValidationError("Please enter username and password")

        user = self.records.get_user_by_username(username)
        if user:
            if user.get("password") != password:
                log.info("login %s: wrong password (local)", username)
                raise AuthError(BAD_CREDENTIALS)
            self.records.set_current_user(user["username"])
            return user

        found = self.sql.get_user(username) if self.sql.is_ready else None
        if found is None or not found.ok or found.value is None:
            log.info("login %s: no such user", username)
            raise AuthError(BAD_CREDENTIALS)

        db_user = found.value
        if db_user["password"] != password:
            log.info("login %s: wrong password (database)", username)
            raise AuthError(BAD_CREDENTIALS)

        # Materialize the database user locally so the session pointer has a record.
        user = self.records.create_user(
            db_user["username"],
            db_user["displayName"],
            password,
            email=db_user["email"],
            is_admin=db_user["isAdmin"],
        )
        log.info("user %s authenticated from database", user["username"])
        self.notify("Logged in from shared database", "success")
        self.records.set_current_user(user["username"])
        return user

    def login_demo(self) -> dict[str, Any]:
        demo = self.records.config.default_demo
        try:
            return self.login(demo.username, demo.password)
        except AuthError:
            if self.records.get_user_by_username(demo.username):
                raise
            user = self.records.create_user(demo.username, demo.displayName, demo.password, email=demo.email)
            self.records.set_current_user(user["username"])
            return user

    def logout(self) -> None:
        self.records.clear_current_user()

    def current_user(self) -> dict[str, Any] | None:
        return self.records.get_current_user()

    def is_logged_in(self) -> bool:
        return self.current_user() is not None

    def is_admin(self) -> bool:
        user = self.current_user()
        return bool(user and user.get("isAdmin"))

    def update_profile(self, updates: dict[str, Any]) -> dict[str, Any]:
        user = self.current_user()
        if not user:
            raise NotAuthenticatedError("Not logged in")

        allowed = {k: updates[k] for k in ("displayName", "email", "settings") if k in updates}
        for k in ("displayName", "email"):
            if allowed.get(k) is not None and not isinstance(allowed[k], str):
                raise ValidationError(f"{k} must be a string")
        if "settings" in allowed and not isinstance(allowed["settings"], dict):
            raise ValidationError("settings must be an object")
        if "displayName" in allowed and len(allowed["displayName"] or "") < 2:
            raise ValidationError("Display name must be at least 2 characters")
        if allowed.get("email") and not EMAIL_RE.match(allowed["email"]):
            raise ValidationError("Please enter a valid email address")

        updated = self.records.update_user(user["username"], allowed)
        if self.sql.is_ready:
            res = self.sql.update_user(user["username"], allowed.get("displayName"), allowed.get("email"))
            if not res.ok:
                log.warning("profile of %s not mirrored to database: %s", user["username"], res.reason)
        return updated

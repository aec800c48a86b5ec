"""Tests for identity resolution from assertion attributes."""

import pytest

from ssogate.core.errors import InactiveUserError, InvalidResponseError
from ssogate.core.identity import IdentityResolver, ResolvedIdentity
from ssogate.core.saml.response import SAMLAttribute

MAPPING = {"uid": "username", "mail": "email"}


def attrs(*pairs: tuple[str, tuple[str, ...]]) -> list[SAMLAttribute]:
    return [SAMLAttribute(name, values) for name, values in pairs]


class TestCollect:
    """Tests for applying the attribute mapping."""

    def test_first_value_used(self, users):
        resolver = IdentityResolver(users, MAPPING)
        collected = resolver.collect(attrs(("uid", ("jdoe", "john"))))
        assert collected == {"username": "jdoe"}

    def test_unmapped_attributes_ignored(self, users):
        resolver = IdentityResolver(users, MAPPING)
        collected = resolver.collect(attrs(("groups", ("admins",)), ("mail", ("j@example.com",))))
        assert collected == {"email": "j@example.com"}

    def test_later_attribute_wins(self, users):
        resolver = IdentityResolver(users, {"uid": "username", "sAMAccountName": "username"})
        collected = resolver.collect(attrs(("uid", ("first",)), ("sAMAccountName", ("second",))))
        assert collected == {"username": "second"}

    def test_attribute_without_values_skipped(self, users):
        resolver = IdentityResolver(users, MAPPING)
        collected = resolver.collect(attrs(("uid", ("jdoe",)), ("uid", ())))
        assert collected == {"username": "jdoe"}

    def test_unknown_field_dropped(self, users, caplog):
        resolver = IdentityResolver(users, {"uid": "username", "dept": "department"})
        assert resolver.attribute_mapping == {"uid": "username"}
        assert "unknown field department" in caplog.text


class TestResolve:
    """Tests for finding or provisioning the local user."""

    def test_creates_external_user(self, users):
        resolver = IdentityResolver(users, MAPPING)

        identity = resolver.resolve(attrs(("uid", ("jdoe",)), ("mail", ("jdoe@example.com",))))

        assert identity.username == "jdoe"
        assert identity.email == "jdoe@example.com"
        assert identity.is_external
        assert identity.is_active
        created = users.created[0]
        assert created.password_hash == ""
        assert not created.is_tmp_password
        assert not created.is_superuser

    def test_existing_user_by_username(self, users):
        existing = users.add("jdoe", "old@example.com")
        resolver = IdentityResolver(users, MAPPING)

        identity = resolver.resolve(attrs(("uid", ("jdoe",)), ("mail", ("new@example.com",))))

        assert identity.id == existing.id
        assert identity.email == "old@example.com"
        assert not identity.is_external
        assert users.created == []

    def test_existing_user_by_email(self, users):
        existing = users.add("john.doe", "jdoe@example.com")
        resolver = IdentityResolver(users, MAPPING)

        identity = resolver.resolve(attrs(("uid", ("jdoe",)), ("mail", ("jdoe@example.com",))))

        assert identity.id == existing.id
        assert identity.username == "john.doe"

    def test_email_only_match(self, users):
        existing = users.add("jdoe", "jdoe@example.com")
        resolver = IdentityResolver(users, MAPPING)

        identity = resolver.resolve(attrs(("mail", ("jdoe@example.com",))))

        assert identity.id == existing.id

    def test_no_username_cannot_create(self, users):
        resolver = IdentityResolver(users, MAPPING)
        with pytest.raises(InvalidResponseError, match="no username"):
            resolver.resolve(attrs(("mail", ("nobody@example.com",))))
        assert users.created == []

    def test_inactive_existing_user(self, users):
        users.add("jdoe", is_active=False)
        resolver = IdentityResolver(users, MAPPING)

        with pytest.raises(InactiveUserError) as exc_info:
            resolver.resolve(attrs(("uid", ("jdoe",))))
        assert exc_info.value.username == "jdoe"

    def test_created_inactive_user(self, users):
        users.activate_external_users = False
        resolver = IdentityResolver(users, MAPPING)

        with pytest.raises(InactiveUserError):
            resolver.resolve(attrs(("uid", ("jdoe",))))
        assert "jdoe" in users.users

    def test_repository_errors_propagate(self, users, monkeypatch):
        def broken(username):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(users, "get_by_username", broken)
        resolver = IdentityResolver(users, MAPPING)

        with pytest.raises(RuntimeError, match="database is locked"):
            resolver.resolve(attrs(("uid", ("jdoe",))))


def test_resolved_identity_to_dict():
    identity = ResolvedIdentity(
        id=7, username="jdoe", email=None, is_external=True, is_active=True
    )
    assert identity.to_dict() == {
        "id": 7,
        "username": "jdoe",
        "email": None,
        "is_external": True,
        "is_active": True,
    }

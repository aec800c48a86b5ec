"""Mapping of assertion attributes onto local user accounts."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from ssogate.core.config import IDENTITY_FIELDS
from ssogate.core.errors import EntityNotFoundError, InactiveUserError, InvalidResponseError

if TYPE_CHECKING:
    from ssogate.core.saml.response import SAMLAttribute

logger = logging.getLogger(__name__)


@dataclass
class User:
    """A user record as returned by the user repository."""

    id: int
    username: str
    email: str | None
    is_external: bool
    is_active: bool
    is_superuser: bool = False
    is_tmp_password: bool = False
    created_at: datetime | None = None


@dataclass
class NewUser:
    """Data for creating a user."""

    username: str
    email: str | None
    password_hash: str = ""
    is_tmp_password: bool = False
    is_external: bool = False
    is_superuser: bool = False


@dataclass(frozen=True)
class ResolvedIdentity:
    """The local account an authenticated assertion maps to."""

    id: int
    username: str
    email: str | None
    is_external: bool
    is_active: bool

    @classmethod
    def from_user(cls, user: User) -> ResolvedIdentity:
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            is_external=user.is_external,
            is_active=user.is_active,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class UserRepository(Protocol):
    """User storage consulted during identity resolution.

    Lookups raise ``EntityNotFoundError`` when nothing matches; any other
    exception is a storage failure.
    """

    def get_by_username(self, username: str) -> User: ...

    def get_by_email(self, email: str) -> User: ...

    def create(self, new_user: NewUser) -> User: ...


class IdentityResolver:
    """Finds or provisions the local user for a set of assertion attributes.

    Args:
        users: The user repository.
        attribute_mapping: IdP attribute name to logical field
            (``username`` or ``email``).
    """

    def __init__(self, users: UserRepository, attribute_mapping: Mapping[str, str]) -> None:
        self.users = users
        self.attribute_mapping: dict[str, str] = {}
        for attribute_name, field_name in attribute_mapping.items():
            if field_name not in IDENTITY_FIELDS:
                logger.warning(f"Ignoring mapping of {attribute_name} to unknown field {field_name}")
                continue
            self.attribute_mapping[attribute_name] = field_name

    def collect(self, attributes: Iterable[SAMLAttribute]) -> dict[str, str]:
        """Apply the attribute mapping.

        The first value of each mapped attribute is used. When two
        attributes map to the same field the later one wins.
        """
        collected: dict[str, str] = {}
        for attribute in attributes:
            field_name = self.attribute_mapping.get(attribute.name)
            if field_name is None or not attribute.values:
                continue
            collected[field_name] = attribute.values[0]
        return collected

    def _find_user(self, username: str | None, email: str | None) -> User | None:
        if username:
            try:
                return self.users.get_by_username(username)
            except EntityNotFoundError:
                logger.debug(f"No user with username {username}")
        if email:
            try:
                return self.users.get_by_email(email)
            except EntityNotFoundError:
                logger.debug(f"No user with email {email}")
        return None

    def resolve(self, attributes: Iterable[SAMLAttribute]) -> ResolvedIdentity:
        """Resolve assertion attributes to a local identity.

        Looks the user up by username, then by email; creates an external
        user when neither matches.

        Raises:
            InvalidResponseError: If a new user would have no username.
            InactiveUserError: If the matched or created user is inactive.
        """
        collected = self.collect(attributes)
        username = collected.get("username")
        email = collected.get("email")

        user = self._find_user(username, email)
        if user is None:
            if not username:
                raise InvalidResponseError("no username attribute to provision a user from")
            user = self.users.create(
                NewUser(
                    username=username,
                    email=email,
                    password_hash="",
                    is_tmp_password=False,
                    is_external=True,
                    is_superuser=False,
                )
            )
            logger.info(f"Created external user {user.username} (id={user.id})")

        if not user.is_active:
            raise InactiveUserError(user.username)

        return ResolvedIdentity.from_user(user)

"""
Identities that own favorites.

A favorites owner is either an anonymous device or an authenticated user.
The two variants are kept as separate frozen dataclasses so call sites
dispatch on the type rather than on nullable fields.
"""
from dataclasses import dataclass
from typing import Union

from poi_share.core.exceptions import ValidationError


@dataclass(frozen=True)
class AnonymousIdentity:
    device_id: str

    def __post_init__(self):
        if not self.device_id or not self.device_id.strip():
            raise ValidationError("device_id must not be empty")

    @property
    def key(self) -> str:
        return f"device:{self.device_id}"


@dataclass(frozen=True)
class AuthenticatedIdentity:
    user_id: str

    def __post_init__(self):
        if not self.user_id or not self.user_id.strip():
            raise ValidationError("user_id must not be empty")

    @property
    def key(self) -> str:
        return f"user:{self.user_id}"


Identity = Union[AnonymousIdentity, AuthenticatedIdentity]


def user_id_of(identity: Identity) -> str | None:
    """Return the user id for authenticated identities, None for devices."""
    if isinstance(identity, AuthenticatedIdentity):
        return identity.user_id
    return None

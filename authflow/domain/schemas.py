from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase"""
    components = string.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


class CamelCaseModel(BaseModel):
    """Base model with camelCase alias configuration"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


class NostrAuthMethod(str, Enum):
    EXTENSION = "extension"
    NSEC = "nsec"
    BUNKER = "bunker"


class AccountChoice(str, Enum):
    GENERATE = "generate"
    BRING_OWN = "bring-own"


class NostrSigner(Protocol):
    """Anything able to sign Nostr events for a single pubkey."""

    async def get_public_key(self) -> str: ...

    async def sign_event(self, event: Dict[str, Any]) -> Dict[str, Any]: ...


# Credentials
class NostrCredentials(CamelCaseModel):
    method: NostrAuthMethod
    nsec: Optional[str] = Field(default=None, repr=False)
    bunker_uri: Optional[str] = Field(default=None, repr=False)

    @classmethod
    def extension(cls) -> "NostrCredentials":
        return cls(method=NostrAuthMethod.EXTENSION)

    @classmethod
    def from_nsec(cls, nsec: str) -> "NostrCredentials":
        return cls(method=NostrAuthMethod.NSEC, nsec=nsec)

    @classmethod
    def from_bunker(cls, bunker_uri: str) -> "NostrCredentials":
        return cls(method=NostrAuthMethod.BUNKER, bunker_uri=bunker_uri)


class EmailPasswordCredentials(CamelCaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, repr=False)


# Profiles
class ProfileData(CamelCaseModel):
    """Kind 0 metadata as collected by the profile setup step."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    name: Optional[str] = None
    display_name: Optional[str] = None
    about: Optional[str] = None
    picture: Optional[str] = None
    banner: Optional[str] = None
    website: Optional[str] = None
    nip05: Optional[str] = None
    lud16: Optional[str] = None

    @field_validator("name", "display_name", mode="before")
    @classmethod
    def strip_names(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


# Identities
class ExternalUser(CamelCaseModel):
    """Account handle returned by the centralized identity provider."""

    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    id_token: Optional[str] = Field(default=None, repr=False)


class LinkedKeypair(CamelCaseModel):
    pubkey: str
    profile: Optional[ProfileData] = None
    is_primary: Optional[bool] = None
    linked_at: Optional[datetime] = None
    is_most_recently_linked: Optional[bool] = None

    @field_validator("linked_at", mode="after")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps are UTC so they compare with offset-aware ones."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class Account(BaseModel):
    """Result of authenticating a keypair; not yet an active session."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    pubkey: str
    signer: Any = Field(default=None, repr=False)
    profile: Optional[ProfileData] = None
    credential: Any = Field(default=None, repr=False)


class PendingCredential(BaseModel):
    """Generated keypair login that has not been activated."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    credential: Any = Field(repr=False)
    pubkey: str
    signer: Any = Field(default=None, repr=False)
    generated_name: str

    def to_account(self) -> Account:
        return Account(pubkey=self.pubkey, signer=self.signer, credential=self.credential)

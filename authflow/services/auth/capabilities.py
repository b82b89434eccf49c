"""Signer capability discovery for the login method picker."""

from dataclasses import dataclass
from typing import List, Protocol

from authflow.domain.schemas import NostrAuthMethod


class NostrCapabilities(Protocol):
    def has_extension(self) -> bool: ...


@dataclass(frozen=True)
class StaticCapabilities:
    """Capabilities known up front, e.g. reported once by the client."""

    extension_available: bool = False

    def has_extension(self) -> bool:
        return self.extension_available


def supported_methods(capabilities: NostrCapabilities) -> List[NostrAuthMethod]:
    """Extension first when available; nsec and bunker always."""
    methods = [NostrAuthMethod.NSEC, NostrAuthMethod.BUNKER]
    if capabilities.has_extension():
        methods.insert(0, NostrAuthMethod.EXTENSION)
    return methods

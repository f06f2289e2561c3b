"""
Runtime capabilities handed to the data-access layer.

The core never checks for a network or a writable disk; whoever builds the
session decides and passes an Environment in.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class Environment:
    """What the hosting process can offer."""
    storage_available: bool = True   # durable cache and analytics files may be written
    online: bool = True              # the remote repository may be contacted

    @classmethod
    def from_settings(cls, settings) -> "Environment":
        return cls(
            storage_available=settings.storage_available,
            online=not settings.offline_mode,
        )

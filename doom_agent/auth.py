import os
from dataclasses import dataclass

from .errors import ConfigurationError


@dataclass(frozen=True)
class Credential:
    """Opaque token presented to the controller in the Hello message."""

    token: str

    def __post_init__(self) -> None:
        if not isinstance(self.token, str) or not self.token:
            raise ConfigurationError("agent key must be a non-empty string")

    def __repr__(self) -> str:
        return "Credential(token='***')"


def credential_from_env(name: str = "DOOM_AGENT_KEY") -> Credential:
    """Build a credential from the environment, raise if missing."""
    token = os.environ.get(name, "")
    if not token:
        raise ConfigurationError(f"{name} is required")
    return Credential(token)

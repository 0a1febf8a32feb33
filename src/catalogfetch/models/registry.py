from __future__ import annotations

from pydantic import BaseModel, ConfigDict, SecretStr


class UpstreamEntry(BaseModel):
    """A configured upstream the proxy may fetch from on a caller's behalf."""

    model_config = ConfigDict(frozen=True)

    key: str  # Registry key, e.g. "opencode"
    origin: str  # Normalised "scheme://host[:port]"
    token: SecretStr | None = None

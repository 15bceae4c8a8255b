from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class TokenProvider(Protocol):
    async def get_access_token(self) -> str | None: ...

    async def refresh(self) -> bool:
        """Try to obtain a fresh token. Returns True if a retry is worthwhile."""
        ...


class StaticTokenProvider:
    def __init__(self, token: str | None):
        self._token = token.strip() if token else None

    async def get_access_token(self) -> str | None:
        return self._token

    async def refresh(self) -> bool:
        return False

from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_new: Callable[[str], Awaitable[None]],
        on_status: Callable[[], Awaitable[None]],
        on_retry: Callable[[], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_new = on_new
        self._on_status = on_status
        self._on_retry = on_retry
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command, _, argument = trimmed.partition(" ")
        if command == "/help":
            await self._on_help()
            return True
        if command == "/new":
            await self._on_new(argument.strip())
            return True
        if command == "/status":
            await self._on_status()
            return True
        if command == "/retry":
            await self._on_retry()
            return True

        self._on_unknown(trimmed)
        return True

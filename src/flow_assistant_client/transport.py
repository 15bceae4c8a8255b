from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Transport(Protocol):
    async def post(
        self,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Issue an authenticated POST and return the decoded JSON body.

        Raises an ``ApiError`` subclass on failure. Must be safe to call
        concurrently from several polling controllers.
        """
        ...

from collections.abc import Callable

import httpx

RequestModifier = Callable[[httpx.Request], None]


def headers_modifier(**headers: str) -> RequestModifier:
    def modifier(request: httpx.Request) -> None:
        request.headers.update(headers)

    return modifier


def bearer_auth_modifier(token: str | Callable[[], str]) -> RequestModifier:
    """Sets ``Authorization``; a callable token is resolved on every request."""

    def modifier(request: httpx.Request) -> None:
        value = token() if callable(token) else token
        request.headers["Authorization"] = f"Bearer {value}"

    return modifier


def query_params_modifier(**params: str) -> RequestModifier:
    def modifier(request: httpx.Request) -> None:
        request.url = request.url.copy_merge_params(params)

    return modifier

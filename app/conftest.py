"""Pytest 配置文件"""

from collections.abc import Callable

import httpx
import pytest

from libs.api_client.client import ApiClient
from libs.api_client.settings import ApiClientSettings

BASE_URL = "https://api.example.com"


@pytest.fixture
def fast_settings() -> ApiClientSettings:
    """Retry settings with millisecond delays and no jitter"""
    return ApiClientSettings(
        max_retries=3,
        initial_delay_ms=1,
        use_jitter=False,
        cancel_poll_interval=0.01,
    )


@pytest.fixture
def make_client(fast_settings) -> Callable[..., ApiClient]:
    """Build a client whose calls are answered by ``handler`` instead of the network"""

    def factory(
        handler,
        settings: ApiClientSettings | None = None,
        base_url: str | None = BASE_URL,
        **kwargs,
    ) -> ApiClient:
        return ApiClient(
            settings=settings or fast_settings,
            base_url=base_url,
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    return factory

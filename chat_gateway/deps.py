import httpx
from fastapi import Request

from .provider.config import ProviderRegistry
from .provider.signing import Signer
from .settings import settings


def build_http_client() -> httpx.AsyncClient:
    """
    Shared AsyncClient for upstream calls; created once in the app lifespan.
    The read timeout bounds how long a stalled backend stream can block.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            settings.upstream_timeout, connect=settings.upstream_connect_timeout
        ),
        trust_env=True,
    )


async def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_provider_registry(request: Request) -> ProviderRegistry:
    return request.app.state.provider_registry


def get_signer(request: Request) -> Signer | None:
    return request.app.state.signer

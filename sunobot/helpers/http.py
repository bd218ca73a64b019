from aiohttp import (
    AsyncResolver,
    ClientSession,
    ClientTimeout,
    DummyCookieJar,
    TCPConnector,
)
from aiohttp_retry import JitterRetry, RetryClient
from azure.core.pipeline.transport._aiohttp import AioHttpTransport
from azure.identity.aio import DefaultAzureCredential
from twilio.http.async_http_client import AsyncTwilioHttpClient

from sunobot.helpers.cache import lru_acache


@lru_acache()
async def aiohttp_session() -> ClientSession:
    """
    Shared AIOHTTP session, for all the SDKs.

    Object is cached for performance.
    """
    return ClientSession(
        # Same config as default in the SDKs
        auto_decompress=False,
        cookie_jar=DummyCookieJar(),  # APIs are stateless
        trust_env=True,
        # Performance
        connector=TCPConnector(resolver=AsyncResolver()),
        # Reliability
        timeout=ClientTimeout(
            connect=5,
            total=60,
        ),
    )


@lru_acache()
async def azure_transport() -> AioHttpTransport:
    """
    AIOHTTP transport for the Azure SDKs (Cosmos DB, AI Inference).

    Object is cached for performance.
    """
    # Azure SDKs retry on their own, no retry layer here
    return AioHttpTransport(
        session_owner=False,  # Session is shared, SDK must not close it
        session=await aiohttp_session(),
    )


@lru_acache()
async def azure_credential() -> DefaultAzureCredential:
    """
    Azure credential, from the environment, the managed identity or the CLI.

    Object is cached for performance.
    """
    return DefaultAzureCredential(
        # Performance
        transport=await azure_transport(),
    )


@lru_acache()
async def twilio_http() -> AsyncTwilioHttpClient:
    """
    Twilio HTTP client, over the shared AIOHTTP session.

    Object is cached for performance.
    """
    client = AsyncTwilioHttpClient(
        timeout=10,
    )
    # Twilio SDK delegates its retries to AIOHTTP
    client.session = RetryClient(
        client_session=await aiohttp_session(),
        # Reliability
        retry_options=JitterRetry(
            attempts=3,
            max_timeout=8,
            start_timeout=0.8,
        ),
    )
    return client

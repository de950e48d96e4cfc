"""
Client configuration examples.

Timeouts, redirect policy, proxies and structured logging.
"""

import asyncio

from nightfly import (
    Client,
    ClientConfig,
    NightflyError,
    Proxy,
    RedirectPolicy,
    TimeoutConfig,
    TimeoutError,
)
from nightfly.core.logging import LoggingConfig


async def strict_timeouts():
    """Short read timeout: the request fails in the 'read' phase."""
    print("\n=== Timeouts ===")

    config = ClientConfig(timeout=TimeoutConfig(connect=2.0, read=1.0, total=5.0))
    async with Client(config) as client:
        try:
            await client.get("https://httpbin.org/delay/3")
        except TimeoutError as e:
            print(f"Timed out ({e.phase}): {e}")


async def no_redirects():
    """Redirects disabled: the 3xx response is returned as is."""
    print("\n=== Redirects disabled ===")

    config = ClientConfig(redirect=RedirectPolicy.none())
    async with Client(config) as client:
        response = await client.get("https://httpbin.org/redirect/1")
        print(f"Status: {response.status_code}, Location: {response.headers.get('location')}")


async def through_proxy(proxy_url: str):
    """All traffic through an HTTP proxy; https goes through CONNECT."""
    print("\n=== Proxy ===")

    config = ClientConfig(proxies=(Proxy.all(proxy_url),), no_proxy="localhost,127.0.0.1")
    async with Client(config) as client:
        try:
            response = await client.get("https://httpbin.org/ip")
            print(f"Origin: {response.json()['origin']}")
        except NightflyError as e:
            print(f"Proxy request failed: {e}")


async def json_logging():
    """JSON logs; credentials in URLs and headers are masked."""
    print("\n=== JSON logging ===")

    logging_config = LoggingConfig.create(level="DEBUG", format="json")
    async with Client(logging=logging_config) as client:
        await client.get("https://httpbin.org/get?token=secret")


async def main():
    await strict_timeouts()
    await no_redirects()
    await through_proxy("http://127.0.0.1:3128")
    await json_logging()


if __name__ == "__main__":
    asyncio.run(main())

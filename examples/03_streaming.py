"""
Streaming responses and cookies.
"""

import asyncio

from nightfly import Client


async def download(url: str, path: str):
    """Body is read chunk by chunk, the connection returns to the pool at the end."""
    print("\n=== Streaming download ===")

    async with Client() as client:
        async with client.stream("GET", url) as response:
            total = 0
            with open(path, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
                    total += len(chunk)
        print(f"Saved {total} bytes to {path}")


async def cookies_roundtrip():
    """Set-Cookie goes to the jar and comes back on the next request."""
    print("\n=== Cookies ===")

    async with Client() as client:
        await client.get("https://httpbin.org/cookies/set?session=abc123")
        response = await client.get("https://httpbin.org/cookies")
        print(f"Server sees: {response.json()}")
        print(f"Jar: {client.cookies.to_list()}")


async def main():
    await download("https://httpbin.org/gzip", "gzip.json")
    await cookies_roundtrip()


if __name__ == "__main__":
    asyncio.run(main())

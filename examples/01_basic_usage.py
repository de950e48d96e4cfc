"""
Basic nightfly usage.

Demonstrates GET, POST with JSON and following redirects.
"""

import asyncio

from nightfly import Client


async def basic_get_request(client: Client):
    """Simple GET request."""
    print("\n=== Basic GET Request ===")

    response = await client.get("https://httpbin.org/get")
    print(f"Status: {response.status_code}")
    print(f"Data: {response.json()}")


async def post_with_json(client: Client):
    """POST request with JSON body."""
    print("\n=== POST with JSON ===")

    data = {
        "title": "My Post",
        "body": "This is the content",
        "userId": 1
    }

    response = await client.post("https://httpbin.org/post", json=data)
    print(f"Status: {response.status_code}")
    print(f"Echo: {response.json()['json']}")


async def follow_redirects(client: Client):
    """Redirect chain is followed; intermediate responses land in history."""
    print("\n=== Redirects ===")

    response = await client.get("https://httpbin.org/redirect/3")
    print(f"Final URL: {response.url}")
    for hop in response.history:
        print(f"  {hop.status_code} {hop.url}")


async def main():
    async with Client(user_agent="nightfly-example/0.1") as client:
        await basic_get_request(client)
        await post_with_json(client)
        await follow_redirects(client)
        print(f"\nPool: {client.pool_stats()}")


if __name__ == "__main__":
    asyncio.run(main())

#!/usr/bin/env python3
"""Script to run sample fastener queries against the search API."""

import asyncio
import sys

import httpx


API_BASE_URL = "http://localhost:8000"

# Sample queries covering each query type
SAMPLE_QUERIES = [
    "DIN 933 M8",
    "ISO 4032 M10 A4",
    "M8x40 hex bolt",
    "A2 stainless bolt",
    "tuerca autoblocante",
    "washer for M12 bolt",
]


async def search_api(client: httpx.AsyncClient, query: str, limit: int = 5) -> dict | None:
    """Send a search request to the API.

    Args:
        client: HTTP client
        query: Search query
        limit: Number of results to return

    Returns:
        Response data from API
    """
    response = await client.post(
        f"{API_BASE_URL}/api/search",
        json={"query": query, "limit": limit},
    )

    if response.status_code == 200:
        return response.json()
    print(f"Error: {response.status_code}")
    print(response.text)
    return None


def print_response(response: dict):
    """Print a search response in a formatted way."""
    classification = response["classification"]
    print(f"\n{'=' * 80}")
    print(f"Query: {response['query']}")
    print(
        f"Type: {classification['query_type']} ({classification['confidence']:.2f}) "
        f"| standard={classification['standard']} "
        f"thread={classification['thread']} material={classification['material']}"
    )
    if response.get("suggestions"):
        print(f"Equivalents: {', '.join(response['suggestions']['equivalent_standards']) or '-'}")
    print(f"{'-' * 80}")

    for result in response["results"]:
        flag = "=" if result["exact_match"] else " "
        print(
            f"{result['rank']:>2}.{flag} {result['score']:6.2f} "
            f"(vec {result['vector_score']:.3f}) {result['standard'] or '-':<10} "
            f"{result['snippet'][:60]}"
        )

    metrics = response["metrics"]
    print(
        f"\n{response['total_results']} results | vector={metrics['vector_result_count']} "
        f"keyword={metrics['keyword_result_count']} | {metrics['execution_time_ms']:.0f}ms"
    )


async def main():
    """Run the sample queries, or the query given on the command line."""
    queries = [" ".join(sys.argv[1:])] if len(sys.argv) > 1 else SAMPLE_QUERIES

    async with httpx.AsyncClient(timeout=60.0) as client:
        try:
            response = await client.get(f"{API_BASE_URL}/health")
            if response.status_code != 200:
                print("Error: API is not responding correctly")
                sys.exit(1)
        except httpx.ConnectError:
            print(f"Error: Cannot connect to API at {API_BASE_URL}")
            print("Make sure the API server is running:")
            print("  uvicorn fastener_search.main:app --reload")
            sys.exit(1)

        for query in queries:
            response = await search_api(client, query)
            if response:
                print_response(response)


if __name__ == "__main__":
    asyncio.run(main())

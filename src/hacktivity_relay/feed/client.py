"""Async client for the HackerOne Hacktivity GraphQL feed."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from hacktivity_relay.feed.models import HacktivityItem, MalformedItemError

logger = logging.getLogger(__name__)

# Constants
DEFAULT_GRAPHQL_URL = "https://hackerone.com/graphql"
DEFAULT_PAGE_SIZE = 25
DEFAULT_TIMEOUT = 15.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

DISCLOSED_QUERY_STRING = "disclosed:true"
SORT_FIELD = "latest_disclosable_activity_at"

HACKTIVITY_QUERY = """
query HacktivitySearchQuery($queryString: String!, $from: Int, $size: Int, $sort: SortInput!) {
  search(index: CompleteHacktivityReportIndex, query_string: $queryString, from: $from, size: $size, sort: $sort) {
    nodes {
      ... on HacktivityDocument {
        report {
          databaseId: _id
          title
          url
          report_generated_content {
            hacktivity_summary
          }
        }
        reporter {
          username
        }
        team {
          name
          handle
          currency
        }
        severity_rating
        total_awarded_amount
      }
    }
  }
}
"""


class FeedFetchError(Exception):
    """Raised when the feed cannot be fetched or parsed."""


def build_payload(page_size: int) -> dict[str, Any]:
    """Build the GraphQL request body for the newest disclosed reports."""
    return {
        "operationName": "HacktivitySearchQuery",
        "variables": {
            "queryString": DISCLOSED_QUERY_STRING,
            "size": page_size,
            "from": 0,
            "sort": {"field": SORT_FIELD, "direction": "DESC"},
        },
        "query": HACKTIVITY_QUERY,
    }


def parse_nodes(body: Any) -> list[HacktivityItem]:
    """Extract items from a GraphQL response body, preserving order.

    Raises:
        FeedFetchError: If the body reports errors or has an unexpected shape.
    """
    if not isinstance(body, dict):
        raise FeedFetchError("Feed response is not a JSON object")

    errors = body.get("errors")
    if errors:
        messages = "; ".join(
            str(err.get("message", err)) if isinstance(err, dict) else str(err)
            for err in errors
        )
        raise FeedFetchError(f"Feed returned GraphQL errors: {messages}")

    try:
        nodes = body["data"]["search"]["nodes"]
    except (KeyError, TypeError) as e:
        raise FeedFetchError("Feed response is missing data.search.nodes") from e

    if not isinstance(nodes, list):
        raise FeedFetchError("Feed nodes is not a list")

    try:
        return [HacktivityItem.from_node(node) for node in nodes]
    except MalformedItemError as e:
        raise FeedFetchError(f"Malformed feed node: {e}") from e


class HacktivityClient:
    """Fetches the newest page of disclosed reports.

    Always requests offset zero sorted by latest disclosable activity,
    newest first. Transient failures (timeouts, 429, 5xx) are retried
    with exponential backoff; anything left over is raised as
    FeedFetchError.

    Example:
        ```python
        async with HacktivityClient(api_key="...") as client:
            items = await client.fetch_latest(25)
        ```
    """

    def __init__(
        self,
        api_key: str,
        *,
        endpoint: str = DEFAULT_GRAPHQL_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        """Initialize the feed client.

        Args:
            api_key: HackerOne API bearer token.
            endpoint: GraphQL endpoint URL.
            timeout: HTTP request timeout in seconds.
            max_retries: Total attempts per fetch.
            retry_delay: Base delay between retries (exponential backoff).
        """
        self.endpoint = endpoint
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> HacktivityClient:
        self._get_client()
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=self._headers)
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_latest(self, page_size: int = DEFAULT_PAGE_SIZE) -> list[HacktivityItem]:
        """Fetch the newest page of disclosed reports.

        Args:
            page_size: Number of reports to request.

        Returns:
            Items ordered newest first, as returned by the server.

        Raises:
            FeedFetchError: On network, auth, or response-shape failure.
        """
        payload = build_payload(page_size)
        client = self._get_client()
        last_error = "no attempts made"

        for attempt in range(self.max_retries):
            delay = self.retry_delay * (2**attempt)
            try:
                response = await client.post(self.endpoint, json=payload)
            except httpx.TimeoutException:
                last_error = "request timed out"
                logger.warning(f"Feed request timeout (attempt {attempt + 1})")
            except httpx.HTTPError as e:
                last_error = str(e)
                logger.warning(f"Feed request error (attempt {attempt + 1}): {e}")
            else:
                if response.status_code == 200:
                    try:
                        body = response.json()
                    except ValueError as e:
                        raise FeedFetchError("Feed response is not valid JSON") from e
                    items = parse_nodes(body)
                    logger.debug(f"Fetched {len(items)} hacktivity items")
                    return items

                last_error = f"HTTP {response.status_code}"
                if response.status_code not in RETRY_STATUS_CODES:
                    raise FeedFetchError(
                        f"Feed request failed: {response.status_code} {response.text[:200]}"
                    )

                if response.status_code == 429:
                    retry_after = response.headers.get("Retry-After")
                    try:
                        delay = max(delay, float(retry_after)) if retry_after else delay
                    except ValueError:
                        pass
                    logger.warning(f"Feed rate limited, retry after {delay:.1f}s")
                else:
                    logger.warning(
                        f"Feed server error {response.status_code} (attempt {attempt + 1})"
                    )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(delay)

        raise FeedFetchError(f"Feed request failed after {self.max_retries} attempts: {last_error}")

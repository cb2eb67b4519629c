"""Airtable client wrapper for reading table records."""

from typing import Any, Iterator, Protocol
from urllib.parse import quote

import requests
import structlog
from requests.exceptions import ConnectionError, Timeout

from tablewatch.models.config import DEFAULT_ENDPOINT_URL
from tablewatch.models.record import Record
from tablewatch.utils.retry import exponential_backoff_retry

log = structlog.stdlib.get_logger()


class AirtableApiError(RuntimeError):
    """Raised when the Airtable API rejects a request or returns malformed data."""


class RetryableAirtableError(AirtableApiError):
    """Raised for rate limiting (429) and server-side (5xx) responses."""


class RecordStoreClient(Protocol):
    """Read-only access to the pages of records of a table."""

    def list_pages(self, table_name: str) -> Iterator[list[Record]]: ...


class AirtableClient:
    """Minimal Airtable REST client following offset pagination to exhaustion."""

    def __init__(
        self,
        api_key: str,
        base_id: str,
        endpoint_url: str = DEFAULT_ENDPOINT_URL,
        page_size: int = 100,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ):
        """
        Initialize Airtable client.

        Args:
            api_key: API key or personal access token
            base_id: Identifier of the Airtable base
            endpoint_url: API endpoint, without the version path
            page_size: Number of records requested per page (max 100)
            timeout_seconds: Timeout for each HTTP request
            session: Optional requests session (a new one is created if None)
        """
        self._base_id = base_id
        self._endpoint_url = str(endpoint_url).rstrip("/")
        self._page_size = page_size
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )
        log.info(
            "airtable_client_initialized",
            endpoint_url=self._endpoint_url,
            base_id=base_id,
        )

    @property
    def base_id(self) -> str:
        return self._base_id

    @property
    def session(self) -> requests.Session:
        return self._session

    def table_url(self, table_name: str) -> str:
        """Build the REST URL of a table."""
        return f"{self._endpoint_url}/v0/{self._base_id}/{quote(table_name, safe='')}"

    def list_pages(self, table_name: str) -> Iterator[list[Record]]:
        """
        Yield every page of records of a table.

        Args:
            table_name: Table name or identifier

        Yields:
            Lists of Record objects, one list per API page

        Raises:
            AirtableApiError: If a request fails after retries or returns malformed data
        """
        log.debug("fetching_table_pages", table=table_name)

        url = self.table_url(table_name)
        offset: str | None = None
        page_count = 0

        while True:
            params: dict[str, Any] = {"pageSize": self._page_size}
            if offset:
                params["offset"] = offset

            payload = self._get_page(url, params)
            page_count += 1
            yield [self._convert_to_record(raw) for raw in payload.get("records") or []]

            offset = payload.get("offset")
            if not offset:
                break

        log.debug("table_pages_fetched", table=table_name, page_count=page_count)

    @exponential_backoff_retry(
        max_retries=3,
        base_delay=1.0,
        max_delay=30.0,
        exceptions=(RetryableAirtableError, ConnectionError, Timeout),
    )
    def _get_page(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        response = self._session.get(url, params=params, timeout=self._timeout_seconds)

        if response.status_code == 429 or 500 <= response.status_code < 600:
            raise RetryableAirtableError(
                f"Airtable returned {response.status_code}: {response.text}"
            )
        if not 200 <= response.status_code < 300:
            raise AirtableApiError(
                f"Airtable request failed with {response.status_code}: {response.text}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AirtableApiError(f"Airtable returned invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise AirtableApiError("Airtable returned an unexpected payload")
        return payload

    def _convert_to_record(self, raw: dict[str, Any]) -> Record:
        record_id = raw.get("id")
        if not record_id:
            raise AirtableApiError("Airtable returned a record without an 'id'")
        return Record(id=record_id, fields=raw.get("fields") or {})

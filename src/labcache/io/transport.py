"""Transport collaborators that pull reports for one time window."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

import requests
from pydantic import ValidationError

from labcache.errors import NonRecoverableTransportError, TransportError
from labcache.models import FetchResult, LabReport, PartitionKey
from labcache.services.permission import PermissionWindow

LOGGER = logging.getLogger(__name__)

DEFAULT_HEADERS: Mapping[str, str] = {
    "User-Agent": "labcache/0.1 (+report cache)",
    "Accept": "application/json",
    "Connection": "keep-alive",
}

SEARCH_ERROR_MARKER = "Error performing search"


class Transport(Protocol):
    """Performs the network call for a single window."""

    def fetch_records_for_window(self, start: datetime, period: timedelta) -> FetchResult:
        ...


class HttpReportTransport:
    """Page through the reporting service's JSON API for one partition.

    The permission window is re-checked before every page; if it closes
    mid-fetch everything read so far is discarded and an aborted result is
    returned so the window is retried later in full.
    """

    def __init__(
        self,
        endpoint: str,
        partition: PartitionKey,
        *,
        permission_window: PermissionWindow | None = None,
        timeout_seconds: float | None = None,
        rate_limit_seconds: float | None = None,
        headers: Mapping[str, str] | None = None,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.partition = partition
        self.permission_window = permission_window or PermissionWindow.always_open()
        self.timeout_seconds = timeout_seconds
        self.rate_limit_seconds = rate_limit_seconds
        self.session = session or requests.Session()
        self.clock = clock
        self.headers = dict(DEFAULT_HEADERS)
        if headers:
            self.headers.update(headers)

    def fetch_records_for_window(self, start: datetime, period: timedelta) -> FetchResult:
        records: list[LabReport] = []
        page: int | None = 1

        while page is not None:
            if not self.permission_window.within_window(self.clock()):
                return FetchResult.aborted(
                    f"Left permission window '{self.permission_window.name}' after {len(records)} reports"
                )

            payload = self._get_page(start, period, page)
            for item in payload.get("reports", []):
                try:
                    records.append(LabReport.model_validate(item))
                except ValidationError as exc:
                    raise TransportError(f"Service returned a malformed report: {exc}") from exc
            page = payload.get("next_page")

        LOGGER.debug("Read %d reports for %s from %s", len(records), self.partition, start.isoformat())
        return FetchResult.data(records)

    def _get_page(self, start: datetime, period: timedelta, page: int) -> dict[str, Any]:
        if self.rate_limit_seconds:
            time.sleep(self.rate_limit_seconds)

        params = {
            "board": self.partition.health_board.value,
            "discipline": self.partition.discipline.value,
            "start": start.isoformat(),
            "period_seconds": int(period.total_seconds()),
            "page": page,
        }
        try:
            response = self.session.get(
                f"{self.endpoint}/reports",
                params=params,
                headers=self.headers,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise TransportError(f"Request to {self.endpoint} failed: {exc}") from exc

        if response.status_code == 400 and SEARCH_ERROR_MARKER in response.text:
            raise NonRecoverableTransportError(f"Service rejected the search for {start.isoformat()}: {response.text}")
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise TransportError(str(exc)) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(f"Service returned invalid JSON for page {page}") from exc
        if not isinstance(payload, Mapping):
            raise TransportError(f"Expected a JSON object for page {page}, got {type(payload).__name__}")
        return dict(payload)


__all__ = ["HttpReportTransport", "Transport"]

"""Report sinks: where finished test reports are published.

A sink failure never fails the test; the client logs it and leaves the
report's ``url`` unset.
"""

import json
import logging
import re
from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable

import httpx

from multiverse.reporting.report import TestReport

logger = logging.getLogger(__name__)


@runtime_checkable
class ReportSink(Protocol):
    """Protocol for report destinations."""

    async def publish(self, report: TestReport) -> Optional[str]:
        """Publish a report and return a link to it, if the sink has one."""
        ...


class HttpReportSink:
    """Posts reports to a results dashboard over HTTP.

    The dashboard answers with JSON; its ``url`` field becomes the report
    link.

    Example usage:
        sink = HttpReportSink("https://dashboard.example.com", api_key="...")
        url = await sink.publish(report)
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        path: str = "/api/reports",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the sink.

        Args:
            base_url: Dashboard base URL
            api_key: Sent as a bearer token when set
            timeout: Request timeout in seconds
            path: Endpoint receiving the report
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._path = path
        self._transport = transport

    async def publish(self, report: TestReport) -> Optional[str]:
        """POST the report.

        Raises:
            httpx.HTTPError: If the request fails or returns an error status
        """
        headers = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(self._path, json=report.to_dict(), headers=headers)
            response.raise_for_status()

        body = response.json() if response.content else None
        url = body.get("url") if isinstance(body, dict) else None
        logger.info(f"Published report '{report.name}' to {self._base_url}")
        return url

    def __repr__(self) -> str:
        return f"HttpReportSink(base_url={self._base_url!r})"


class JsonFileReportSink:
    """Writes each report as a JSON file in a directory."""

    def __init__(self, output_dir: Union[str, Path]):
        self._output_dir = Path(output_dir)

    async def publish(self, report: TestReport) -> Optional[str]:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        slug = re.sub(r"[^a-zA-Z0-9_-]+", "-", report.name).strip("-").lower() or "report"
        stamp = report.timestamp.strftime("%Y%m%dT%H%M%S")
        path = self._output_dir / f"{slug}_{stamp}.json"

        with open(path, "w") as f:
            json.dump(report.to_dict(), f, indent=2, default=str)

        logger.debug(f"Wrote report '{report.name}' to {path}")
        return path.resolve().as_uri()

    def __repr__(self) -> str:
        return f"JsonFileReportSink(output_dir={str(self._output_dir)!r})"

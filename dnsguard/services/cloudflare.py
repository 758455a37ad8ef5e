from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from dnsguard.services.credentials import Credential
from dnsguard.settings import get_settings

log = logging.getLogger(__name__)

LIST_PAGE_SIZE = 100
# Guard against a provider that keeps reporting more pages
MAX_LIST_PAGES = 500

DEFAULT_ERROR = "Cloudflare API error"


@dataclass
class ApiResponse:
    """Normalised ``{success, result, errors}`` envelope."""

    success: bool
    result: Any = None
    errors: list[dict[str, Any]] = field(default_factory=list)
    result_info: dict[str, Any] | None = None
    status_code: int | None = None

    @property
    def error_message(self) -> str:
        if self.errors:
            first = self.errors[0]
            if isinstance(first, dict) and first.get("message"):
                return str(first["message"])
        return DEFAULT_ERROR

    @classmethod
    def from_response(cls, response: httpx.Response) -> ApiResponse:
        try:
            data = response.json()
        except ValueError:
            return cls(
                success=False,
                errors=[{"message": f"HTTP {response.status_code}"}],
                status_code=response.status_code,
            )
        if not isinstance(data, dict):
            return cls(
                success=False,
                errors=[{"message": f"Unexpected response body (HTTP {response.status_code})"}],
                status_code=response.status_code,
            )
        return cls(
            success=bool(data.get("success")),
            result=data.get("result"),
            errors=data.get("errors") or [],
            result_info=data.get("result_info"),
            status_code=response.status_code,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "result": self.result, "errors": self.errors}


class CloudflareClient:
    """Blocking client for the DNS record endpoints of the Cloudflare v4 API.

    Transport failures raise ``httpx.HTTPError``; API-level failures come back
    as an ``ApiResponse`` with ``success=False``.
    """

    def __init__(
        self,
        credential: Credential,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        settings = get_settings()
        self._client = httpx.Client(
            base_url=(base_url or settings.cf_api_base_url).rstrip("/"),
            headers={**credential.headers(), "Content-Type": "application/json"},
            timeout=timeout if timeout is not None else settings.cf_api_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> CloudflareClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> ApiResponse:
        response = self._client.request(method, path, **kwargs)
        result = ApiResponse.from_response(response)
        if not result.success:
            log.debug(f"{method} {path} failed: {result.error_message}")
        return result

    def list_records(self, zone_id: str) -> ApiResponse:
        """Fetch every record of a zone, following ``result_info.total_pages``."""
        records: list[dict[str, Any]] = []
        page = 1
        while page <= MAX_LIST_PAGES:
            resp = self._request(
                "GET",
                f"/zones/{zone_id}/dns_records",
                params={"page": page, "per_page": LIST_PAGE_SIZE},
            )
            if not resp.success:
                return resp

            batch = resp.result or []
            records.extend(batch)

            total_pages = (resp.result_info or {}).get("total_pages") or 1
            if page >= total_pages or not batch:
                break
            page += 1

        return ApiResponse(success=True, result=records, result_info={"count": len(records)})

    def create_record(self, zone_id: str, body: dict[str, Any]) -> ApiResponse:
        return self._request("POST", f"/zones/{zone_id}/dns_records", json=body)

    def update_record(self, zone_id: str, record_id: str, body: dict[str, Any]) -> ApiResponse:
        return self._request("PUT", f"/zones/{zone_id}/dns_records/{record_id}", json=body)

    def patch_record(self, zone_id: str, record_id: str, body: dict[str, Any]) -> ApiResponse:
        return self._request("PATCH", f"/zones/{zone_id}/dns_records/{record_id}", json=body)

    def delete_record(self, zone_id: str, record_id: str) -> ApiResponse:
        return self._request("DELETE", f"/zones/{zone_id}/dns_records/{record_id}")

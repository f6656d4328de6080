"""
HTTP transport for the enforcement client.

Maps every response to a FetchOutcome so callers never handle transport
exceptions. Timeouts are whatever the httpx client is configured with.
"""

from dataclasses import dataclass
from typing import Any

import httpx
from structlog import get_logger

from zone.client.backoff import FetchOutcome
from zone.client.snapshot import SnapshotRule

logger = get_logger(__name__)


@dataclass(frozen=True)
class ApiResult:
    """Outcome plus the decoded body, when there was one."""

    outcome: FetchOutcome
    status_code: int | None = None
    data: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is FetchOutcome.OK

    @property
    def error(self) -> str | None:
        if self.data and isinstance(self.data.get("error"), str):
            return self.data["error"]
        return None


@dataclass(frozen=True)
class ConfigResult:
    """Result of a decision read."""

    outcome: FetchOutcome
    rules: tuple[SnapshotRule, ...] | None = None


def classify(status_code: int) -> FetchOutcome:
    if status_code == 429:
        return FetchOutcome.THROTTLED
    if status_code == 404:
        return FetchOutcome.NOT_FOUND
    if 200 <= status_code < 300:
        return FetchOutcome.OK
    return FetchOutcome.FAILED


class ZoneApiClient:
    """Thin async client for the ledger API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def _post(self, path: str, payload: dict[str, Any]) -> ApiResult:
        try:
            response = await self.http_client.post(f"{self.base_url}{path}", json=payload)
        except httpx.HTTPError as e:
            logger.debug("api_unreachable", path=path, error=str(e))
            return ApiResult(outcome=FetchOutcome.UNREACHABLE)

        try:
            data = response.json()
        except ValueError:
            data = {"error": "Invalid response from server"}
        if not isinstance(data, dict):
            data = None

        outcome = classify(response.status_code)
        if outcome is FetchOutcome.FAILED:
            logger.warning(
                "api_request_failed",
                path=path,
                status=response.status_code,
                error=(data or {}).get("error"),
            )
        return ApiResult(outcome=outcome, status_code=response.status_code, data=data)

    async def init(self, user_uuid: str) -> ApiResult:
        return await self._post("/auth/init", {"uuid": user_uuid})

    async def update_email(self, user_uuid: str, email: str) -> ApiResult:
        return await self._post("/auth/email", {"uuid": user_uuid, "email": email})

    async def replace_rules(self, user_uuid: str, rules: list[dict[str, Any]]) -> ApiResult:
        return await self._post("/auth/rules", {"uuid": user_uuid, "rules": rules})

    async def heartbeat(self, user_uuid: str, domain: str, seconds: float) -> ApiResult:
        return await self._post(
            "/heartbeat", {"uuid": user_uuid, "domain": domain, "seconds": seconds}
        )

    async def fetch_config(self, user_uuid: str) -> ConfigResult:
        """Read the decision table; rules are only set on success."""
        result = await self._post("/config", {"uuid": user_uuid})
        if not result.ok or not result.data or not isinstance(result.data.get("rules"), list):
            outcome = result.outcome if not result.ok else FetchOutcome.FAILED
            return ConfigResult(outcome=outcome)

        rules = tuple(
            SnapshotRule.from_wire(r)
            for r in result.data["rules"]
            if isinstance(r, dict) and r.get("domain")
        )
        return ConfigResult(outcome=FetchOutcome.OK, rules=rules)

    async def request_unlock(self, user_uuid: str, domain: str) -> ApiResult:
        return await self._post("/unlock/request", {"uuid": user_uuid, "domain": domain})

    async def verify_unlock(self, user_uuid: str, code: str) -> ApiResult:
        return await self._post("/unlock/verify", {"uuid": user_uuid, "otp": code})

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()

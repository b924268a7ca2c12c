"""
Reports Provider Client
Session-token client for the shortage/discontinuation reports API

Features:
- Login exchanges credentials for an auth-token header
- Account rotation on rate limit (429) or auth failure (401/403)
- Paginated search, newest-first incremental paging, per-report details
"""

from datetime import datetime
from typing import AsyncIterator, List, Optional

import httpx
import pybreaker
import structlog

from shortage_sync.config import ProviderAccount
from shortage_sync.errors import AuthenticationError, FetchError
from shortage_sync.models.statuses import ACTIVE_REPORT_STATUSES, ReportType
from shortage_sync.services.http_fetch import fetch_json
from shortage_sync.services.reconciler import parse_datetime

logger = structlog.get_logger(__name__)

ROTATE_ON_STATUSES = (401, 403, 429)


class ReportsProviderClient:
    """
    Client for the reports provider.

    The underlying httpx.AsyncClient is owned by the caller so one
    connection pool serves a whole job run.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        accounts: List[ProviderAccount],
        base_url: str,
        *,
        page_size: int = 100,
        retries: int = 3,
        backoff_seconds: float = 2.0,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
    ):
        if not accounts:
            raise AuthenticationError("At least one reports provider account is required")
        self.http = http
        self.accounts = accounts
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self.breaker = breaker
        self.auth_token: Optional[str] = None
        self.current_account_index = 0
        self.api_calls = 0

    @property
    def current_account(self) -> str:
        """Current account email (for logging)"""
        return self.accounts[self.current_account_index].email

    async def login(self, account_index: Optional[int] = None) -> str:
        """
        Exchange credentials for an auth token.

        Raises:
            AuthenticationError: login rejected or no token returned
        """
        index = self.current_account_index if account_index is None else account_index
        account = self.accounts[index]

        try:
            response = await self.http.post(
                f"{self.base_url}/login",
                data={"email": account.email, "password": account.password},
            )
        except httpx.HTTPError as e:
            raise FetchError(f"Login request failed for {account.email}: {e}", url=f"{self.base_url}/login") from e

        if not response.is_success:
            raise AuthenticationError(
                f"Login failed for {account.email}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        token = response.headers.get("auth-token")
        if not token:
            raise AuthenticationError(f"No auth-token received for {account.email}")

        self.auth_token = token
        self.current_account_index = index
        logger.info("reports_provider_login", account=account.email)
        return token

    async def rotate_account(self) -> str:
        """
        Log in with the next account. A single account logs in again for a
        fresh token.

        Raises:
            AuthenticationError: every account has been tried
        """
        next_index = (self.current_account_index + 1) % len(self.accounts)
        if next_index == 0 and self.current_account_index != 0:
            raise AuthenticationError("All accounts exhausted")
        logger.warning("reports_provider_account_rotated", from_account=self.current_account, to_index=next_index)
        return await self.login(next_index)

    async def _get(self, path: str, params: Optional[dict] = None):
        if not self.auth_token:
            await self.login()

        url = f"{self.base_url}/{path}"
        token = self.auth_token
        try:
            self.api_calls += 1
            return await self._fetch(url, params)
        except (AuthenticationError, FetchError) as e:
            if e.status_code not in ROTATE_ON_STATUSES:
                raise
            logger.warning("reports_provider_rejected", path=path, status_code=e.status_code)
            # A concurrent request may already have rotated
            if self.auth_token == token:
                await self.rotate_account()
            self.api_calls += 1
            return await self._fetch(url, params)

    async def _fetch(self, url: str, params: Optional[dict]):
        return await fetch_json(
            self.http,
            url,
            retries=self.retries,
            backoff_seconds=self.backoff_seconds,
            params=params,
            headers={"auth-token": self.auth_token},
            breaker=self.breaker,
            no_retry_statuses=(429,),
        )

    async def search(
        self,
        *,
        status: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        orderby: str = "updated_date",
        order: str = "desc",
    ) -> dict:
        """
        One page of the search endpoint: {"data": [...], "total": n, ...}
        """
        params = {
            "limit": str(limit or self.page_size),
            "offset": str(offset),
            "orderby": orderby,
            "order": order,
        }
        if status:
            params["filter_status"] = status
        return await self._get("search", params)

    async def get_report(self, report_id: int, report_type: str) -> dict:
        """Full detail for one report (discontinuations use their own endpoint)"""
        if report_type == ReportType.discontinuation.value:
            return await self._get(f"discontinuances/{report_id}")
        return await self._get(f"shortages/{report_id}")

    async def iter_status_pages(self, status: str) -> AsyncIterator[List[dict]]:
        """All pages of reports currently in one status"""
        offset = 0
        while True:
            page = await self.search(status=status, offset=offset)
            reports = page.get("data") or []
            total = int(page.get("total") or 0)
            logger.info("reports_page_fetched", status=status, fetched=offset + len(reports), total=total)
            if reports:
                yield reports
            offset += len(reports)
            if not reports or offset >= total:
                return

    async def iter_active_reports(self) -> AsyncIterator[List[dict]]:
        """Pages of every report in an active status (full refresh)"""
        for status in ACTIVE_REPORT_STATUSES:
            async for reports in self.iter_status_pages(status):
                yield reports

    async def fetch_updated_since(self, since: datetime) -> List[dict]:
        """
        Reports updated after `since`, paging newest-first and stopping at the
        first page that reaches older records.
        """
        collected: List[dict] = []
        offset = 0
        while True:
            page = await self.search(offset=offset)
            reports = page.get("data") or []
            total = int(page.get("total") or 0)

            fresh = []
            for report in reports:
                updated = parse_datetime(report.get("updated_date"))
                if updated is not None and updated > since:
                    fresh.append(report)
            collected.extend(fresh)
            logger.info(
                "reports_page_fetched",
                fetched=offset + len(reports),
                total=total,
                updated_since=len(fresh),
            )

            offset += len(reports)
            if not reports or len(fresh) < len(reports) or offset >= total:
                return collected

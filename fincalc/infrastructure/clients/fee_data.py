"""Reference-data HTTP client for court-fee schedules"""

import httpx
from pydantic import ValidationError

from fincalc.config import settings
from fincalc.domain.exceptions import RemoteDataError
from fincalc.domain.models import ApiResponse, FeeScheduleData, UpdateCheck
from fincalc.infrastructure.observability.metrics import fee_data_fetch_failures_counter, fee_data_latency_histogram
from fincalc.utils.date_utils import parse_timestamp, utc_now


class FeeDataClient:
    """Client for the remote fee-schedule endpoint"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.fee_data_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def get_fee_schedule(self) -> ApiResponse:
        """
        Fetch the full fee schedule payload (all court types plus exemptions).

        Raises:
            RemoteDataError: On timeout, HTTP errors, or a payload that fails validation
        """
        async with self._client() as client:
            try:
                with fee_data_latency_histogram.time():
                    response = await client.get("/fee-schedule")
                    response.raise_for_status()
                data = FeeScheduleData.model_validate(response.json())
                return ApiResponse(success=True, source="api", timestamp=utc_now(), data=data)

            except httpx.TimeoutException as e:
                fee_data_fetch_failures_counter.inc()
                raise RemoteDataError(f"Fee data API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                fee_data_fetch_failures_counter.inc()
                raise RemoteDataError(f"Fee data API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                fee_data_fetch_failures_counter.inc()
                raise RemoteDataError(f"Fee data API unreachable: {e}") from e
            except (ValidationError, ValueError) as e:
                fee_data_fetch_failures_counter.inc()
                raise RemoteDataError(f"Invalid fee schedule data: {e}") from e

    async def check_for_updates(self, current_version: str) -> UpdateCheck:
        """
        Ask whether a newer schedule than `current_version` has been published.

        Raises:
            RemoteDataError: On timeout, HTTP errors, or invalid response
        """
        async with self._client() as client:
            try:
                response = await client.get("/fee-schedule/updates", params={"version": current_version})
                response.raise_for_status()
                data = response.json()
                return UpdateCheck(
                    has_updates=bool(data["has_updates"]),
                    last_update=parse_timestamp(data["last_update"]),
                )

            except httpx.TimeoutException as e:
                raise RemoteDataError(f"Fee data API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise RemoteDataError(f"Fee data API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise RemoteDataError(f"Fee data API unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise RemoteDataError(f"Invalid update check response: {e}") from e

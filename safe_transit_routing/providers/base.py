"""
Shared HTTP plumbing for the upstream data providers.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

import requests

from ..data.models import LivePrediction, VehicleState
from ..exceptions import ProviderUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteFeed:
    """Everything one provider returned for one route in one refresh cycle."""
    route_id: str
    predictions: Tuple[LivePrediction, ...] = ()
    vehicles: Tuple[VehicleState, ...] = ()


class JsonApiClient:
    """
    Minimal JSON-over-HTTP client with a per-call timeout and bounded retry.

    Timeouts, connection errors and 5xx responses are retried with
    exponential backoff; 4xx responses and malformed JSON are not. Whatever
    still fails surfaces as ProviderUnavailable.
    """

    provider_name = 'provider'

    def __init__(self, base_url: str, timeout_s: float = 5.0, attempts: int = 2,
                 backoff_base_s: float = 0.5, session: Optional[requests.Session] = None,
                 timezone: str = 'America/Chicago', sleep: Callable[[float], None] = time.sleep):
        self.base_url = base_url.rstrip('/')
        self.timeout_s = timeout_s
        self.attempts = max(1, attempts)
        self.backoff_base_s = backoff_base_s
        self.session = session or requests.Session()
        self.tz = ZoneInfo(timezone)
        self._sleep = sleep

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}" if path else self.base_url

    def get_json(self, path: str = '', params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a JSON document.

        Raises:
            ProviderUnavailable: If every attempt failed
        """
        url = self._url(path)
        last_error: Optional[ProviderUnavailable] = None

        for attempt in range(1, self.attempts + 1):
            try:
                response = self.session.get(url, params=params, timeout=self.timeout_s)
            except requests.Timeout as e:
                last_error = ProviderUnavailable(f"{self.provider_name} timed out after {self.timeout_s}s",
                                                 provider=self.provider_name)
                logger.debug(f"{self.provider_name}: attempt {attempt} timed out: {e}")
            except requests.RequestException as e:
                last_error = ProviderUnavailable(f"{self.provider_name} request failed: {e}",
                                                 provider=self.provider_name)
                logger.debug(f"{self.provider_name}: attempt {attempt} failed: {e}")
            else:
                if response.status_code >= 500:
                    last_error = ProviderUnavailable(
                        f"{self.provider_name} returned HTTP {response.status_code}",
                        provider=self.provider_name, status_code=response.status_code)
                elif response.status_code >= 400:
                    raise ProviderUnavailable(
                        f"{self.provider_name} rejected the request with HTTP {response.status_code}",
                        provider=self.provider_name, status_code=response.status_code)
                else:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise ProviderUnavailable(f"{self.provider_name} returned malformed JSON",
                                                  provider=self.provider_name) from e

            if attempt < self.attempts:
                delay = self.backoff_base_s * (2 ** (attempt - 1))
                logger.debug(f"{self.provider_name}: retrying in {delay:.2f}s")
                self._sleep(delay)

        logger.warning(f"{self.provider_name}: giving up after {self.attempts} attempts: {last_error}")
        raise last_error

    def localize(self, value: datetime) -> datetime:
        """Attach the transit agency's timezone to a naive local timestamp."""
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value

    def fetch_route(self, route_id: str, stop_ids: Sequence[str] = ()) -> RouteFeed:
        """Predictions and vehicles for one route."""
        raise NotImplementedError

    def close(self) -> None:
        self.session.close()

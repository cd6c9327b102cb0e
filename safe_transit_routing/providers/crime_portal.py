"""
Chicago Data Portal (Socrata) crime incident client.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from ..data.models import CrimeIncident
from ..exceptions import ProviderUnavailable
from .base import JsonApiClient
from .schemas import CrimeRecord, validate_records

logger = logging.getLogger(__name__)

DEFAULT_CRIME_BASE_URL = 'https://data.cityofchicago.org/resource/ijzp-q8t2.json'

SOQL_TIME_FORMAT = '%Y-%m-%dT%H:%M:%S'


class CrimePortalClient(JsonApiClient):
    """Query point incidents by bounding box and time window."""

    provider_name = 'chicago-crime'

    def __init__(self, base_url: str = DEFAULT_CRIME_BASE_URL, app_token: str = '',
                 page_size: int = 50000, **kwargs):
        super().__init__(base_url, **kwargs)
        self.page_size = page_size
        if app_token:
            self.session.headers['X-App-Token'] = app_token

    def _where(self, bounds: Dict[str, float], start: datetime, end: datetime) -> str:
        start_local = start.astimezone(self.tz) if start.tzinfo else start
        end_local = end.astimezone(self.tz) if end.tzinfo else end
        return (
            f"latitude between {bounds['lat_min']} and {bounds['lat_max']} "
            f"AND longitude between {bounds['lon_min']} and {bounds['lon_max']} "
            f"AND date between '{start_local:{SOQL_TIME_FORMAT}}' and '{end_local:{SOQL_TIME_FORMAT}}'"
        )

    def get_incidents(self, bounds: Dict[str, float], start: Optional[datetime] = None,
                      end: Optional[datetime] = None, max_records: int = 200000) -> List[CrimeIncident]:
        """
        Fetch incidents inside a bounding box.

        Args:
            bounds: lat_min, lat_max, lon_min, lon_max
            start: Window start (defaults to 180 days before ``end``)
            end: Window end (defaults to now)
            max_records: Stop paging after this many rows

        Returns:
            Validated incidents with timezone-aware timestamps
        """
        end = end or datetime.now(timezone.utc)
        start = start or end - timedelta(days=180)
        where = self._where(bounds, start, end)

        rows: List[dict] = []
        offset = 0
        while offset < max_records:
            limit = min(self.page_size, max_records - offset)
            page = self.get_json(params={
                '$select': 'id,date,primary_type,latitude,longitude',
                '$where': where,
                '$order': 'date DESC',
                '$limit': limit,
                '$offset': offset,
            })
            if not isinstance(page, list):
                raise ProviderUnavailable(f"{self.provider_name}: expected a list of rows",
                                          provider=self.provider_name)
            rows.extend(page)
            if len(page) < limit:
                break
            offset += limit

        incidents = [
            CrimeIncident(
                incident_id=record.incident_id,
                lat=record.latitude,
                lon=record.longitude,
                category=record.primary_type,
                timestamp=self.localize(record.date),
            )
            for record in validate_records(CrimeRecord, rows, 'crime')
        ]
        logger.info(f"Fetched {len(incidents)} crime incidents ({len(rows) - len(incidents)} invalid) "
                    f"from {start:%Y-%m-%d} to {end:%Y-%m-%d}")
        return incidents

"""
Explicit schemas for upstream payloads.

Every record is validated here before it can reach the graph builder or the
safety scorer; fields the providers sometimes omit are optional.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

Record = TypeVar('Record', bound=BaseModel)

BUS_TIME_FORMATS = ('%Y%m%d %H:%M:%S', '%Y%m%d %H:%M')


def _parse_bus_time(value: Any) -> Any:
    if isinstance(value, str):
        for fmt in BUS_TIME_FORMATS:
            try:
                return datetime.strptime(value.strip(), fmt)
            except ValueError:
                continue
        raise ValueError(f"Unrecognized Bus Tracker timestamp: {value!r}")
    return value


def _as_text(value: Any) -> Any:
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _as_flag(value: Any) -> Any:
    if value in (None, ''):
        return False
    return value


class _UpstreamRecord(BaseModel):
    model_config = ConfigDict(frozen=True, extra='ignore', populate_by_name=True)


class BusPredictionRecord(_UpstreamRecord):
    """One entry of Bus Tracker ``getpredictions`` (``bustime-response.prd``)."""

    generated_at: datetime = Field(validation_alias=AliasChoices('tmstmp', 'generated_at'))
    stop_id: str = Field(validation_alias=AliasChoices('stpid', 'stop_id'))
    stop_name: Optional[str] = Field(default=None, validation_alias=AliasChoices('stpnm', 'stop_name'))
    vehicle_id: str = Field(validation_alias=AliasChoices('vid', 'vehicle_id'))
    route: str = Field(validation_alias=AliasChoices('rt', 'route'))
    direction: Optional[str] = Field(default=None, validation_alias=AliasChoices('rtdir', 'direction'))
    predicted_time: datetime = Field(validation_alias=AliasChoices('prdtm', 'predicted_time'))
    delayed: bool = Field(default=False, validation_alias=AliasChoices('dly', 'delayed'))

    @field_validator('generated_at', 'predicted_time', mode='before')
    @classmethod
    def _times(cls, value: Any) -> Any:
        return _parse_bus_time(value)

    @field_validator('stop_id', 'vehicle_id', 'route', mode='before')
    @classmethod
    def _ids(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator('delayed', mode='before')
    @classmethod
    def _flags(cls, value: Any) -> Any:
        return _as_flag(value)


class BusVehicleRecord(_UpstreamRecord):
    """One entry of Bus Tracker ``getvehicles`` (``bustime-response.vehicle``)."""

    vehicle_id: str = Field(validation_alias=AliasChoices('vid', 'vehicle_id'))
    observed_at: datetime = Field(validation_alias=AliasChoices('tmstmp', 'observed_at'))
    lat: float
    lon: float
    heading: Optional[float] = Field(default=None, validation_alias=AliasChoices('hdg', 'heading'))
    route: str = Field(validation_alias=AliasChoices('rt', 'route'))
    delayed: bool = Field(default=False, validation_alias=AliasChoices('dly', 'delayed'))

    @field_validator('observed_at', mode='before')
    @classmethod
    def _times(cls, value: Any) -> Any:
        return _parse_bus_time(value)

    @field_validator('vehicle_id', 'route', mode='before')
    @classmethod
    def _ids(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator('delayed', mode='before')
    @classmethod
    def _flags(cls, value: Any) -> Any:
        return _as_flag(value)


class TrainPositionRecord(_UpstreamRecord):
    """One train of Train Tracker ``ttpositions`` (``ctatt.route[].train[]``)."""

    run_number: str = Field(validation_alias=AliasChoices('rn', 'run_number'))
    destination_name: Optional[str] = Field(default=None, validation_alias=AliasChoices('destNm', 'destination_name'))
    next_station_id: str = Field(validation_alias=AliasChoices('nextStaId', 'next_station_id'))
    generated_at: datetime = Field(validation_alias=AliasChoices('prdt', 'generated_at'))
    arrival_time: datetime = Field(validation_alias=AliasChoices('arrT', 'arrival_time'))
    delayed: bool = Field(default=False, validation_alias=AliasChoices('isDly', 'delayed'))
    lat: float
    lon: float
    heading: Optional[float] = None

    @field_validator('run_number', 'next_station_id', mode='before')
    @classmethod
    def _ids(cls, value: Any) -> Any:
        return _as_text(value)


class TrainArrivalRecord(_UpstreamRecord):
    """One entry of Train Tracker ``ttarrivals`` (``ctatt.eta[]``)."""

    station_id: str = Field(validation_alias=AliasChoices('staId', 'station_id'))
    run_number: str = Field(validation_alias=AliasChoices('rn', 'run_number'))
    route: str = Field(validation_alias=AliasChoices('rt', 'route'))
    destination_name: Optional[str] = Field(default=None, validation_alias=AliasChoices('destNm', 'destination_name'))
    generated_at: datetime = Field(validation_alias=AliasChoices('prdt', 'generated_at'))
    arrival_time: datetime = Field(validation_alias=AliasChoices('arrT', 'arrival_time'))
    scheduled: bool = Field(default=False, validation_alias=AliasChoices('isSch', 'scheduled'))
    delayed: bool = Field(default=False, validation_alias=AliasChoices('isDly', 'delayed'))

    @field_validator('station_id', 'run_number', 'route', mode='before')
    @classmethod
    def _ids(cls, value: Any) -> Any:
        return _as_text(value)


class CrimeRecord(_UpstreamRecord):
    """One row of the Chicago Data Portal crimes dataset."""

    incident_id: str = Field(validation_alias=AliasChoices('id', 'incident_id'))
    date: datetime
    primary_type: str
    latitude: float
    longitude: float

    @field_validator('incident_id', mode='before')
    @classmethod
    def _ids(cls, value: Any) -> Any:
        return _as_text(value)


def validate_records(schema: Type[Record], rows: Iterable[Any], source: str) -> List[Record]:
    """
    Validate raw rows against a schema, dropping invalid ones.

    Args:
        schema: Pydantic model to validate with
        rows: Raw JSON objects
        source: Name used in log messages

    Returns:
        Successfully validated records
    """
    records = []
    dropped = 0
    for row in rows:
        try:
            records.append(schema.model_validate(row))
        except ValidationError as e:
            dropped += 1
            logger.debug(f"Dropped invalid {source} record: {e.errors(include_url=False)}")
    if dropped:
        logger.debug(f"{source}: kept {len(records)} records, dropped {dropped}")
    return records

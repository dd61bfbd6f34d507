"""Client for the Nemo Cloud air-quality API.

Every endpoint except ``/session/login`` expects a ``sessionId`` header. The
server drops sessions after 30 minutes of inactivity and forgets all of them
when it restarts, so callers go through a :class:`NemoSession`, which renews
its :class:`SessionLease` when it ages out or gets rejected.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from settings import NemoCloudSettings, Settings, get_settings
from sources.base import SessionCloud, UpstreamError

logger = logging.getLogger(__name__)

# The login endpoint rejects a computed digest but accepts this fixed one.
_LOGIN_AUTHORIZATION = (
    "Digest username=Test,realm=Authorized users of etheraApi,"
    "nonce=33e4dbaf2b2fd2c78769b436ffbe9d05,uri=/AirQualityAPI/session/login,"
    "response=b9e580f4f3b9d8ffd9205f58f5e18ee8,opaque=f8333b33f212bae4ba905cea2b4819e6"
)


class NemoAuthenticationError(UpstreamError):
    """The session was rejected; a new login is required."""


class _NemoModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class NemoDevice(_NemoModel):
    bid: int
    serial: str
    name: str


class MeasureSet(_NemoModel):
    bid: int
    start: int = Field(..., description="seconds since the Unix epoch")
    end: int = Field(..., description="seconds since the Unix epoch")
    variables_number: Optional[int] = Field(default=None, alias="variablesNumber")
    values_number: Optional[int] = Field(default=None, alias="valuesNumber")
    campaign: Optional[str] = None
    city: Optional[str] = None
    building: Optional[str] = None
    room: Optional[str] = None
    operator: Optional[str] = None


class DeviceMeasureSets(_NemoModel):
    device_serial_number: str = Field(..., alias="deviceSerialNumber")
    measure_sets: List[MeasureSet] = Field(default_factory=list, alias="measureSets")


class MeasureVariable(_NemoModel):
    structure: Optional[int] = None
    source: Optional[int] = None
    id: Optional[str] = None
    name: Optional[str] = None
    unit: Optional[str] = None


class Measure(_NemoModel):
    measure_bid: int = Field(..., alias="measureBid")
    variable: MeasureVariable


class NemoValue(_NemoModel):
    time: float = Field(..., description="seconds since the Unix epoch")
    value: Optional[float] = None
    error_code: Optional[int] = Field(default=None, alias="errorCode")


class NemoSensor(_NemoModel):
    bid: int
    serial: str
    ref_exposition: Optional[str] = Field(default=None, alias="refExposition")
    manufacture_date: Optional[int] = Field(default=None, alias="manufactureDate")
    first_used_date: Optional[int] = Field(default=None, alias="firstUsedDate")
    sensor_type_bid: Optional[int] = Field(default=None, alias="sensorTypeBID")
    exposed_number: Optional[int] = Field(default=None, alias="exposedNumber")


class NemoCloud:
    """Stateless HTTP adapter; every call takes the session token explicitly."""

    def __init__(
        self,
        config: NemoCloudSettings,
        timeout: float = 120.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.name = config.name
        self._config = config
        self._client = client or httpx.Client(
            base_url=f"{config.url}/AirQualityAPI",
            timeout=timeout,
            headers={"Accept-version": "v4"},
        )

    @classmethod
    def all_from_settings(cls, settings: Optional[Settings] = None) -> List[NemoCloud]:
        settings = settings or get_settings()
        return [cls(config, timeout=settings.nemo_timeout) for config in settings.nemo_clouds]

    def close(self) -> None:
        self._client.close()

    def login(self) -> str:
        response = self._client.post(
            "/session/login",
            json={
                "operator": self._config.operator,
                "password": self._config.password,
                "company": self._config.company,
            },
            headers={"Authorization": _LOGIN_AUTHORIZATION},
        )
        self._raise_for_status(response)
        session_id = response.json().get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise NemoAuthenticationError("Login response carries no sessionId.")
        return session_id

    def list_devices(self, session: str) -> List[NemoDevice]:
        payload = self._get("/devices/", session)
        return [NemoDevice.model_validate(item) for item in payload or []]

    def list_measure_sets(
        self,
        session: str,
        device_serial: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> List[DeviceMeasureSets]:
        params = {"deviceSerialNumber": device_serial, "start": start, "end": end}
        payload = self._get(
            "/measureSets/",
            session,
            params={key: value for key, value in params.items() if value is not None},
        )
        return [DeviceMeasureSets.model_validate(item) for item in payload or []]

    def get_sensor(self, session: str, measure_set_bid: int) -> NemoSensor:
        payload = self._get(f"/measureSets/{measure_set_bid}/sensors", session)
        if not payload:
            raise UpstreamError(f"No sensor returned for measure set {measure_set_bid}.")
        return NemoSensor.model_validate(payload)

    def list_measures(self, session: str, measure_set_bid: int) -> List[Measure]:
        payload = self._get(f"/measureSets/{measure_set_bid}/measures", session)
        return [Measure.model_validate(item) for item in payload or []]

    def list_values(self, session: str, measure_bid: int) -> List[NemoValue]:
        payload = self._get(f"/measures/{measure_bid}/values", session)
        return [NemoValue.model_validate(item) for item in payload or []]

    def _get(self, path: str, session: str, params: Optional[dict] = None) -> Any:
        response = self._client.get(path, headers={"sessionId": session}, params=params)
        self._raise_for_status(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code in (401, 403):
            raise NemoAuthenticationError(
                f"Nemo Cloud rejected the session with status {response.status_code}."
            )
        response.raise_for_status()


class SessionLease:
    """A session token that is renewed once it is older than ``ttl`` seconds."""

    def __init__(
        self,
        login: Callable[[], str],
        ttl: float = 25 * 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._login = login
        self.ttl = ttl
        self._clock = clock
        self._token: Optional[str] = None
        self._acquired_at = 0.0

    @property
    def expired(self) -> bool:
        return self._token is None or self._clock() - self._acquired_at >= self.ttl

    def ensure_valid(self) -> str:
        if self.expired:
            self._token = self._login()
            self._acquired_at = self._clock()
            logger.debug("Acquired Nemo Cloud session")
        if self._token is None:
            raise NemoAuthenticationError("login returned no session id")
        return self._token

    def invalidate(self) -> None:
        self._token = None


class NemoSession:
    """One worker's view of a :class:`NemoCloud`, holding its own lease.

    A rejected call invalidates the lease and re-raises, so the caller's
    retry logs in again on the next attempt.
    """

    def __init__(
        self,
        cloud: SessionCloud,
        ttl: float = 25 * 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cloud = cloud
        self.lease = SessionLease(cloud.login, ttl=ttl, clock=clock)

    def _call(self, method: Callable[..., Any], *args: Any) -> Any:
        token = self.lease.ensure_valid()
        try:
            return method(token, *args)
        except NemoAuthenticationError:
            self.lease.invalidate()
            raise

    def list_devices(self) -> List[NemoDevice]:
        return self._call(self.cloud.list_devices)

    def list_measure_sets(
        self, device_serial: str, start: Optional[int] = None, end: Optional[int] = None
    ) -> List[DeviceMeasureSets]:
        return self._call(self.cloud.list_measure_sets, device_serial, start, end)

    def get_sensor(self, measure_set_bid: int) -> NemoSensor:
        return self._call(self.cloud.get_sensor, measure_set_bid)

    def list_measures(self, measure_set_bid: int) -> List[Measure]:
        return self._call(self.cloud.list_measures, measure_set_bid)

    def list_values(self, measure_bid: int) -> List[NemoValue]:
        return self._call(self.cloud.list_values, measure_bid)

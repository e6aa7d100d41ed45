"""Pydantic models shared by the datasource backend.

Inbound models accept the camelCase keys the dashboard sends; everything is
frozen once parsed so a query cannot change underneath the fetch loop.
"""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from catalyst_datasource.config import Settings


class InstanceSettings(BaseModel):
    """One configured connection to a Catalyst Center backend."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    uid: str = "default"
    base_url: str = ""
    insecure_skip_verify: bool = False
    ca_cert: str = ""
    username: str = ""
    password: str = ""
    api_token: str = ""

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @property
    def override_token(self) -> str:
        return self.api_token.strip()

    @classmethod
    def from_settings(cls, settings: Settings) -> "InstanceSettings":
        """Build the default instance from application settings."""
        return cls(
            uid=settings.catalyst_instance_uid,
            base_url=settings.catalyst_base_url,
            insecure_skip_verify=settings.catalyst_insecure_skip_verify,
            ca_cert=settings.catalyst_ca_cert,
            username=settings.catalyst_username,
            password=settings.catalyst_password,
            api_token=settings.catalyst_api_token,
        )


class TimeRange(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: datetime | None = Field(default=None, alias="from")
    to: datetime | None = None

    @staticmethod
    def _to_ms(dt: datetime | None) -> int:
        if dt is None:
            return 0
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return int(dt.timestamp() * 1000)

    @property
    def from_ms(self) -> int:
        return self._to_ms(self.from_)

    @property
    def to_ms(self) -> int:
        return self._to_ms(self.to)


def _split_list(v: Any) -> Any:
    """Accept ``"P1,P2"`` as well as ``["P1", "P2"]``."""
    if v is None:
        return []
    if isinstance(v, str):
        return [part for part in v.split(",") if part.strip()]
    return v


class CatalystQuery(BaseModel):
    """A single dashboard query: kind, hard cap, filters and time window."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    ref_id: str = "A"
    query_type: Literal["alerts", "siteHealth"] = "alerts"
    limit: int | None = None
    time_range: TimeRange = Field(default_factory=TimeRange)

    # Issue filters. ``severity`` and ``status`` are the legacy aliases of
    # ``priority`` and ``issue_status``.
    priority: list[str] = Field(default_factory=list)
    severity: str = ""
    status: list[str] = Field(default_factory=list)
    issue_status: str = ""
    site_id: str = Field(default="", validation_alias=AliasChoices("siteId", "site_id", "site"))
    device_id: str = Field(default="", validation_alias=AliasChoices("deviceId", "device_id", "device"))
    mac_address: str = Field(default="", validation_alias=AliasChoices("macAddress", "mac_address", "mac"))
    ai_driven: str = ""
    enrich: bool = False

    # Site-health filters
    site_type: str = ""
    parent_site_name: str = ""
    site_name: str = ""
    metric: list[str] = Field(default_factory=list, validation_alias=AliasChoices("metric", "metrics"))

    @field_validator("priority", "status", "metric", mode="before")
    @classmethod
    def _coerce_list(cls, v: Any) -> Any:
        return _split_list(v)

    @field_validator("ai_driven", mode="before")
    @classmethod
    def _bool_to_str(cls, v: Any) -> Any:
        # The dashboard sends either a JSON boolean or a YES/NO string.
        if v is None:
            return ""
        if isinstance(v, bool):
            return "true" if v else "false"
        return v


class IssueRow(BaseModel):
    """One assurance issue flattened into the fixed table schema."""

    model_config = ConfigDict(frozen=True)

    time_ms: int
    id: str = ""
    title: str = ""
    severity: str = ""
    status: str = ""
    category: str = ""
    device: str = ""
    mac: str = ""
    site: str = ""
    rule: str = ""
    details: str = ""


# --- Frames returned to the dashboard ---


class Notice(BaseModel):
    severity: Literal["info", "warning", "error"] = "info"
    text: str


class FrameMeta(BaseModel):
    notices: list[Notice] = Field(default_factory=list)


class FrameField(BaseModel):
    name: str
    type: Literal["time", "string", "number"]
    values: list[Any] = Field(default_factory=list)


class Frame(BaseModel):
    name: str
    fields: list[FrameField] = Field(default_factory=list)
    meta: FrameMeta | None = None


class DataResponse(BaseModel):
    frames: list[Frame] = Field(default_factory=list)
    error: str | None = None


class HealthResult(BaseModel):
    status: Literal["ok", "error"]
    message: str


class ResourceResponse(BaseModel):
    status: int
    body: bytes = b""
    headers: dict[str, str] = Field(default_factory=dict)

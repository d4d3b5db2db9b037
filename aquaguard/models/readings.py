"""
Telemetry reading models.

This module defines the water-quality parameters and the Reading record
delivered by the ingestion adapter once per sensor cycle per device.

Models:
    WaterParameter: Monitored parameters (pH, Turbidity, TDS)
    Reading: One decoded telemetry record
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from aquaguard.errors import ValidationError


class WaterParameter(str, Enum):
    """
    Monitored water-quality parameters.

    Attributes:
        PH: Acidity/alkalinity, unitless, safe within a band.
        TURBIDITY: Cloudiness in NTU, safe below a ceiling.
        TDS: Total dissolved solids in ppm, safe below a ceiling.
    """

    PH = "pH"
    TURBIDITY = "Turbidity"
    TDS = "TDS"

    @property
    def field_name(self) -> str:
        """Attribute name of this parameter on a Reading."""
        return _FIELD_NAMES[self]

    @property
    def unit(self) -> str:
        """Display unit suffix used in alert messages."""
        return _UNITS[self]

    @property
    def is_banded(self) -> bool:
        """Check if the parameter is safe within a two-sided band."""
        return self == WaterParameter.PH


_FIELD_NAMES: Dict[WaterParameter, str] = {
    WaterParameter.PH: "ph",
    WaterParameter.TURBIDITY: "turbidity",
    WaterParameter.TDS: "tds",
}

_UNITS: Dict[WaterParameter, str] = {
    WaterParameter.PH: "",
    WaterParameter.TURBIDITY: " NTU",
    WaterParameter.TDS: " ppm",
}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat a naive datetime as UTC; aware values and None pass through."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Reading(BaseModel):
    """
    A decoded telemetry record for one device and one sensor cycle.

    Absent parameter values mean "not measured this cycle". At least one
    value must be present, and present values must lie within the
    physical sensor ranges.

    Attributes:
        device_id: Identifier of the reporting device.
        ph: pH value in [0, 14].
        turbidity: Turbidity in NTU, in [0, 1000].
        tds: Total dissolved solids in ppm, in [0, 2000].
        timestamp: When the reading was taken (UTC).

    Example:
        >>> reading = Reading.from_payload(
        ...     {"deviceId": "D1", "pH": 5.0, "timestamp": "2025-01-26T12:00:00Z"}
        ... )
        >>> reading.value_for(WaterParameter.PH)
        5.0
    """

    model_config = {"frozen": True, "extra": "ignore", "populate_by_name": True}

    device_id: str = Field(
        ...,
        alias="deviceId",
        description="Identifier of the reporting device",
        min_length=1,
        max_length=200,
    )
    ph: Optional[float] = Field(
        default=None,
        alias="pH",
        description="pH value",
        ge=0,
        le=14,
    )
    turbidity: Optional[float] = Field(
        default=None,
        description="Turbidity in NTU",
        ge=0,
        le=1000,
    )
    tds: Optional[float] = Field(
        default=None,
        description="Total dissolved solids in ppm",
        ge=0,
        le=2000,
    )
    timestamp: datetime = Field(
        ...,
        description="When the reading was taken",
    )

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        return as_utc(v)

    @model_validator(mode="after")
    def require_measurement(self) -> "Reading":
        """At least one sensor value is required."""
        if self.ph is None and self.turbidity is None and self.tds is None:
            raise ValueError(
                "At least one sensor reading (pH, turbidity, or TDS) is required"
            )
        return self

    def value_for(self, parameter: WaterParameter) -> Optional[float]:
        """Return the measured value for a parameter, or None if absent."""
        return getattr(self, parameter.field_name)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Reading":
        """
        Build a Reading from a decoded ingestion payload.

        Args:
            payload: Mapping using either wire names (deviceId, pH) or
                attribute names (device_id, ph).

        Returns:
            Reading: The validated reading.

        Raises:
            ValidationError: If a required field is missing or a value is
                out of range.
        """
        if not isinstance(payload, dict):
            raise ValidationError(
                "Invalid reading: payload must be a JSON object",
                details={"payload_type": type(payload).__name__},
            )
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid reading: {e.error_count()} validation error(s)",
                details={
                    "device_id": payload.get("deviceId") or payload.get("device_id"),
                    "errors": [
                        {"loc": list(err["loc"]), "msg": err["msg"]}
                        for err in e.errors()
                    ],
                },
            ) from e

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from services.clock import as_naive_utc


class CreateReservationDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    itemID: int
    rentalStart: datetime
    rentalEnd: datetime
    count: int = 1

    @field_validator("rentalStart", "rentalEnd")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return as_naive_utc(value)


class ReservationDecisionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reason: Optional[str] = None


class SweepRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    now: Optional[datetime] = None

    @field_validator("now")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(value)

"""
Request and response bodies of the HTTP API.
"""

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


class AvailabilityRequestSchema(BaseModel):
    start: datetime
    end: datetime


class AvailabilityResponseSchema(BaseModel):
    start: datetime
    end: datetime
    granularity: int = Field(description="Slot size in seconds")
    matrix: List[bool] = Field(description="One entry per slot; true if the whole slot is open")


class BookingRequestSchema(BaseModel):
    start: datetime
    end: datetime
    name: str = Field(min_length=1)


class BookingResponseSchema(BaseModel):
    uid: str | None
    name: str | None
    start: datetime
    end: datetime


class NowResponseSchema(BaseModel):
    now: datetime

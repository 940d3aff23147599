"""
HTTP routes over the availability service.
"""

import logging
from datetime import datetime, timezone

import pendulum
from fastapi import Depends, FastAPI, HTTPException, Request

from openslots import __version__
from openslots.api.schemas import (
    AvailabilityRequestSchema, AvailabilityResponseSchema,
    BookingRequestSchema, BookingResponseSchema, NowResponseSchema,
)
from openslots.domain.exceptions import (
    AnchorMissingError, EventParseError, InvalidWindowError,
    RecurrenceRuleError, SlotNotAvailableError, TransportError,
)
from openslots.domain.models import TimeWindow, utc_now
from openslots.services.availability import AvailabilityService

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> pendulum.DateTime:
    # Naive datetimes are taken as UTC.
    if value.tzinfo is None:
        return pendulum.instance(value, tz="UTC")
    return pendulum.instance(value.astimezone(timezone.utc))


def _window(start: datetime, end: datetime) -> TimeWindow:
    return TimeWindow.of(_as_utc(start), _as_utc(end))


def get_service(request: Request) -> AvailabilityService:
    return request.app.state.service


def create_app(service: AvailabilityService) -> FastAPI:
    app = FastAPI(title="openslots", version=__version__)
    app.state.service = service

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/now", response_model=NowResponseSchema)
    def now():
        return NowResponseSchema(now=utc_now())

    # POST since browsers can't send a body with GET
    @app.post("/availability", response_model=AvailabilityResponseSchema)
    async def availability(
        req: AvailabilityRequestSchema,
        svc: AvailabilityService = Depends(get_service),
    ):
        try:
            result = await svc.availability(_window(req.start, req.end))
        except TransportError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except TimeoutError:
            raise HTTPException(status_code=504, detail="Calendar server timed out")
        except (EventParseError, RecurrenceRuleError, AnchorMissingError) as e:
            logger.error("Availability computation failed: %s", e)
            raise HTTPException(status_code=500, detail=str(e))

        return AvailabilityResponseSchema(
            start=result.start,
            end=result.end,
            granularity=result.granularity_seconds,
            matrix=result.matrix,
        )

    @app.post("/book", response_model=BookingResponseSchema, status_code=201)
    async def book(
        req: BookingRequestSchema,
        svc: AvailabilityService = Depends(get_service),
    ):
        try:
            event = await svc.book(name=req.name, window=_window(req.start, req.end))
        except InvalidWindowError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SlotNotAvailableError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except TransportError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except TimeoutError:
            raise HTTPException(status_code=504, detail="Calendar server timed out")
        except (EventParseError, RecurrenceRuleError, AnchorMissingError) as e:
            logger.error("Booking check failed: %s", e)
            raise HTTPException(status_code=500, detail=str(e))

        return BookingResponseSchema(
            uid=event.uid,
            name=event.summary,
            start=event.anchor_start,
            end=event.anchor_end,
        )

    return app

"""
HTTP ingress: validate an inbound request, build an Event and hand it to the
broker exactly once.

The response reflects admission only. Delivery to the sinks completes after
the response has been sent, so sink latency never reaches the caller.
"""
import logging
from typing import Iterable, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse, Response

from ..core.errors import (
    AdmissionRejectedError,
    BadRequestError,
    ClientError,
    PayloadTooLargeError,
    UnsupportedMediaTypeError,
)
from ..core.metrics import INGRESS_REQUESTS_TOTAL
from ..models.events import Event, PublishResult, PublishStatus, RejectReason
from ..models.schemas import PublishAcceptedResponse
from .broker import Broker
from .subscription_registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


class IngressHandler:
    """Terminates inbound publish requests."""

    def __init__(
        self,
        broker: Broker,
        registry: SubscriptionRegistry,
        max_body_bytes: int,
        accepted_content_types: Iterable[str],
        retry_after_seconds: int = 1,
        debug: bool = False,
    ):
        self.broker = broker
        self.registry = registry
        self.max_body_bytes = max_body_bytes
        self.accepted_content_types = frozenset(t.lower() for t in accepted_content_types)
        self.retry_after_seconds = retry_after_seconds
        self.debug = debug

    async def handle(self, request: Request, topic: Optional[str]) -> Response:
        """Validate, publish and map the broker's answer to an HTTP response."""
        try:
            topic = self._validate_topic(topic)
            content_type = self._validate_content_type(request.headers.get("content-type"))
            payload = await self._read_body(request)

            event = Event(topic=topic, payload=payload, content_type=content_type)
            result = await self.broker.publish(event)
            self._check_admission(result, topic)
        except ClientError as e:
            logger.info(f"Rejected publish request ({e.status_code}): {e.detail}")
            return self._error(e.status_code, e.detail)
        except AdmissionRejectedError as e:
            return self._error(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                e.detail,
                headers={"Retry-After": str(e.retry_after)},
            )
        except Exception as e:
            logger.error(f"Failed to handle publish request: {e}", exc_info=True)
            return self._error(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                str(e) if self.debug else "Internal server error",
            )

        logger.info(f"Accepted event {event.id} for topic {topic} ({len(payload)} bytes)")
        body = PublishAcceptedResponse(event_id=event.id, topic=topic)
        INGRESS_REQUESTS_TOTAL.labels(status=str(status.HTTP_202_ACCEPTED)).inc()
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=body.model_dump(by_alias=True),
        )

    def _validate_topic(self, topic: Optional[str]) -> str:
        topic = (topic or "").strip()
        if not topic:
            raise BadRequestError("Topic is required (path segment or X-Event-Topic header)")
        if not self.registry.has_topic(topic):
            raise BadRequestError(f"Unknown topic: {topic}")
        return topic

    def _validate_content_type(self, header: Optional[str]) -> str:
        media_type = (header or "").split(";")[0].strip().lower()
        if not media_type:
            raise UnsupportedMediaTypeError("Content-Type header is required")
        if media_type not in self.accepted_content_types:
            raise UnsupportedMediaTypeError(f"Unsupported media type: {media_type}")
        return media_type

    async def _read_body(self, request: Request) -> bytes:
        """Read the body, stopping as soon as it exceeds the limit."""
        declared = request.headers.get("content-length")
        if declared is not None:
            try:
                declared_size = int(declared)
            except ValueError:
                raise BadRequestError("Invalid Content-Length header")
            if declared_size > self.max_body_bytes:
                raise self._too_large()

        body = bytearray()
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > self.max_body_bytes:
                raise self._too_large()
        return bytes(body)

    def _too_large(self) -> PayloadTooLargeError:
        return PayloadTooLargeError(f"Payload exceeds {self.max_body_bytes} bytes")

    def _check_admission(self, result: PublishResult, topic: str) -> None:
        if result.status == PublishStatus.ACCEPTED:
            return
        if result.status == PublishStatus.BACKPRESSURE:
            raise AdmissionRejectedError(
                "Gateway is under backpressure, retry later",
                retry_after=self.retry_after_seconds,
            )
        if result.reason == RejectReason.UNKNOWN_TOPIC:
            # Subscriptions were removed between validation and publish
            raise BadRequestError(f"Unknown topic: {topic}")
        if result.reason == RejectReason.JOURNAL_UNAVAILABLE:
            raise AdmissionRejectedError(
                "Event journal unavailable, retry later",
                retry_after=self.retry_after_seconds,
            )
        raise AdmissionRejectedError(
            "Gateway is shutting down", retry_after=self.retry_after_seconds
        )

    @staticmethod
    def _error(status_code: int, detail: str, headers: Optional[dict] = None) -> JSONResponse:
        INGRESS_REQUESTS_TOTAL.labels(status=str(status_code)).inc()
        return JSONResponse(status_code=status_code, content={"detail": detail}, headers=headers)

"""One poll cycle: devices, then the timeline since the last cursor.

The poller owns the timeline cursor. On the first cycle with a non-empty
timeline it only primes the cursor with the newest id, so history from
before process start is never counted. After that each cycle reconciles
the new items oldest-first and advances the cursor to the newest id once
the whole page has been applied.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import TYPE_CHECKING, TypeVar

from opentelemetry import trace

from surehub_exporter.client import SurehubError, SurehubStatusError
from surehub_exporter.metrics import get_error_type
from surehub_exporter.reconcile import reconcile_device, reconcile_timeline_item
from surehub_exporter.registry import RegistrationError
from surehub_exporter.session import AuthError

if TYPE_CHECKING:
    from surehub_exporter.client import SurehubClient
    from surehub_exporter.metrics import ExporterMetrics
    from surehub_exporter.models import TimelineItem
    from surehub_exporter.registry import MetricRegistry
    from surehub_exporter.session import SessionManager

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_HTTP_UNAUTHORIZED = 401


class PollCycleError(RuntimeError):
    """Raised when any step of a poll cycle fails. Nothing is committed."""

    def __init__(self, message: str, *, operation: str) -> None:
        self.operation = operation
        super().__init__(message)


class Poller:
    """Fetches SureHub resources and reconciles them into metric series."""

    def __init__(
        self,
        client: SurehubClient,
        session: SessionManager,
        registry: MetricRegistry,
        *,
        metrics: ExporterMetrics | None = None,
    ) -> None:
        self._client = client
        self._session = session
        self._registry = registry
        self._metrics = metrics
        self._last_timeline_id = 0

    @property
    def last_timeline_id(self) -> int:
        """Highest timeline id already handled; 0 until the cursor is primed."""
        return self._last_timeline_id

    async def poll(self) -> None:
        tracer = trace.get_tracer("surehub_exporter")
        with tracer.start_as_current_span("surehub.poll") as span:
            span.set_attribute("last_timeline_id", self._last_timeline_id)
            try:
                if self._metrics is not None:
                    with self._metrics.track_poll_cycle():
                        await self._poll()
                else:
                    await self._poll()
            except PollCycleError as exc:
                span.set_status(trace.StatusCode.ERROR, str(exc))
                span.record_exception(exc)
                if self._metrics is not None:
                    self._metrics.record_error(
                        error_type=get_error_type(exc.__cause__ or exc),
                        operation=exc.operation,
                    )
                raise
            span.set_attribute("next_timeline_id", self._last_timeline_id)

    async def _poll(self) -> None:
        try:
            await self._session.ensure_session()
        except AuthError as exc:
            raise PollCycleError(f"login failed: {exc}", operation="login") from exc

        devices = await self._call(
            "list_devices",
            self._client.list_devices(authorization=self._session.authorization()),
        )
        for device in devices:
            try:
                reconcile_device(self._registry, device)
            except RegistrationError as exc:
                raise PollCycleError(
                    f"error while polling device {device.id}: {exc}",
                    operation="reconcile_device",
                ) from exc

        since_id = self._last_timeline_id if self._last_timeline_id > 0 else None
        items = await self._call(
            "list_timeline",
            self._client.list_timeline(
                authorization=self._session.authorization(),
                since_id=since_id,
            ),
        )
        if not items:
            return

        if self._last_timeline_id == 0:
            self._prime_cursor(items)
        else:
            self._reconcile_timeline(items)

    def _prime_cursor(self, items: list[TimelineItem]) -> None:
        newest_id = items[0].id
        if newest_id is None or newest_id <= 0:
            logger.warning(
                "Newest timeline item has no usable id, cursor left unset",
                extra={"items": len(items)},
            )
            return
        self._advance_cursor(newest_id)
        logger.info("Set initial last timeline id", extra={"id": newest_id})

    def _reconcile_timeline(self, items: list[TimelineItem]) -> None:
        # the cursor must be able to move past this page before anything is counted,
        # otherwise the next cycle refetches it and counts it twice
        newest_id = items[0].id
        if newest_id is None or newest_id <= self._last_timeline_id:
            raise PollCycleError(
                f"timeline page does not advance the cursor: newest id {newest_id}, "
                f"last timeline id {self._last_timeline_id}",
                operation="reconcile_timeline",
            )

        # the API returns newest-first; counters must accumulate in event order
        for item in reversed(items):
            try:
                reconcile_timeline_item(self._registry, item)
            except RegistrationError as exc:
                raise PollCycleError(
                    f"failed to poll timeline item {item.id}: {exc}",
                    operation="reconcile_timeline",
                ) from exc

        self._advance_cursor(newest_id)
        logger.info(
            "Processed items and set new last timeline id",
            extra={"items": len(items), "id": newest_id},
        )

    def _advance_cursor(self, timeline_id: int) -> None:
        self._last_timeline_id = timeline_id
        if self._metrics is not None:
            self._metrics.set_timeline_cursor(timeline_id)

    async def _call(self, api_method: str, request: Awaitable[_T]) -> _T:
        """Await a SureHub request, translating failures into ``PollCycleError``."""
        try:
            result = await request
        except SurehubStatusError as exc:
            status = "error"
            if exc.status_code == _HTTP_UNAUTHORIZED:
                status = "unauthorized"
                # the next cycle logs in again before fetching
                self._session.invalidate()
            self._record_api_call(api_method, status)
            raise PollCycleError(f"{api_method} failed: {exc}", operation=api_method) from exc
        except SurehubError as exc:
            self._record_api_call(api_method, "error")
            raise PollCycleError(f"{api_method} failed: {exc}", operation=api_method) from exc

        self._record_api_call(api_method, "success")
        return result

    def _record_api_call(self, api_method: str, status: str) -> None:
        if self._metrics is not None:
            self._metrics.record_source_api_call(api_method=api_method, status=status)

"""Batched log shipping to Axiom.

The sink owns three bounded priority queues and ships them in one JSON POST
per flush. Flushes are triggered by:
- any error/critical entry (high priority)
- the normal queue reaching ``batch_size``
- a periodic timer started by ``start()``

Enqueueing never blocks and never raises. Flushes scheduled from request
handlers run as background tasks so they never delay a response.
"""

import asyncio
import json
import logging
from collections import deque
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.config import Settings

# Plain stdlib logger: these records are excluded from forwarding to avoid recursion.
_internal = logging.getLogger(__name__)

AXIOM_INGEST_URL = "https://api.axiom.co/v1/datasets/{dataset}/ingest"
MAX_QUEUE_SIZE = 10_000

_PRIORITY_BY_LEVEL = {
    "critical": "high",
    "fatal": "high",
    "error": "high",
    "exception": "high",
    "warning": "normal",
    "warn": "normal",
    "info": "normal",
}


def _priority(level: str) -> str:
    return _PRIORITY_BY_LEVEL.get(level.lower(), "low")


class AxiomLogSink:
    """Bounded, priority-aware log buffer with an explicit start/flush/stop lifecycle."""

    def __init__(
        self,
        *,
        token: str = "",
        dataset: str = "",
        batch_size: int = 10,
        flush_interval: float = 5.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        max_queue_size: int = MAX_QUEUE_SIZE,
        client: httpx.AsyncClient | None = None,
    ):
        self.token = token
        self.dataset = dataset
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._queues: dict[str, deque[dict[str, Any]]] = {
            "high": deque(maxlen=max_queue_size),
            "normal": deque(maxlen=max_queue_size),
            "low": deque(maxlen=max_queue_size),
        }
        self._client = client
        self._owns_client = client is None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer_task: asyncio.Task | None = None
        self._flush_lock: asyncio.Lock | None = None
        self._flush_scheduled = False
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "AxiomLogSink":
        return cls(
            token=settings.axiom_token,
            dataset=settings.axiom_dataset,
            batch_size=settings.axiom_batch_size,
            flush_interval=settings.axiom_flush_interval_seconds,
            max_retries=settings.axiom_max_retries,
            retry_delay=settings.axiom_retry_delay_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.dataset)

    @property
    def started(self) -> bool:
        return self._loop is not None

    def pending_count(self) -> int:
        return sum(len(q) for q in self._queues.values())

    # ── Lifecycle ───────────────────────────────────────────────────

    def start(self) -> None:
        """Bind to the running loop and start the periodic flush timer."""
        if self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._flush_lock = asyncio.Lock()
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)
        if self.flush_interval > 0:
            self._timer_task = self._loop.create_task(self._run_timer())

    async def stop(self) -> None:
        """Stop the timer, drain in-flight flushes and ship what is left."""
        if self._loop is None:
            return
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.flush()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        self._loop = None
        self._flush_lock = None

    # ── Producer side ───────────────────────────────────────────────

    def enqueue(self, entry: dict[str, Any]) -> None:
        """Queue one log entry; schedules a flush when a trigger is hit."""
        priority = _priority(str(entry.get("level", "info")))
        self._queues[priority].append(entry)
        if priority == "high" or len(self._queues["normal"]) >= self.batch_size:
            self.schedule_flush()

    def schedule_flush(self) -> None:
        """Fire-and-forget flush. No-op before ``start()`` or when one is already scheduled."""
        loop = self._loop
        if loop is None or self._flush_scheduled or loop.is_closed():
            return
        self._flush_scheduled = True
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._spawn_flush()
        else:
            loop.call_soon_threadsafe(self._spawn_flush)

    def _spawn_flush(self) -> None:
        self._flush_scheduled = False
        task = asyncio.ensure_future(self.flush())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ── Consumer side ───────────────────────────────────────────────

    def _drain(self) -> list[dict[str, Any]]:
        batch: list[dict[str, Any]] = []
        for name in ("high", "normal", "low"):
            queue = self._queues[name]
            while queue:
                batch.append(queue.popleft())
        return batch

    async def flush(self) -> int:
        """Ship every queued entry. Returns the number of entries delivered."""
        if self._flush_lock is None:
            return 0
        async with self._flush_lock:
            batch = self._drain()
            if not batch or not self.enabled:
                return 0
            try:
                await self._ship(batch)
            except httpx.HTTPError as exc:
                _internal.warning("axiom_ship_failed dropped=%d error=%s", len(batch), exc)
                return 0
            return len(batch)

    async def _ship(self, batch: list[dict[str, Any]]) -> None:
        body = json.dumps(batch, default=str)
        url = AXIOM_INGEST_URL.format(dataset=self.dataset)
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(httpx.HTTPError),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_delay, min=0, max=60),
            reraise=True,
        ):
            with attempt:
                response = await self._client.post(url, content=body, headers=headers)
                response.raise_for_status()

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            if self.pending_count():
                try:
                    await self.flush()
                except Exception as exc:
                    _internal.warning("axiom_periodic_flush_failed error=%s", exc)


class SinkForwarder:
    """structlog processor that copies each event into an ``AxiomLogSink``.

    Events from the sink's own logger and from the HTTP client libraries are
    skipped, otherwise shipping a batch would enqueue another one.
    """

    EXCLUDED_LOGGERS = (__name__, "httpx", "httpcore")

    def __init__(self, sink: AxiomLogSink):
        self.sink = sink

    def __call__(self, logger, method_name, event_dict):
        name = str(event_dict.get("logger", ""))
        if not name.startswith(self.EXCLUDED_LOGGERS):
            entry = dict(event_dict)
            entry.setdefault("level", method_name)
            entry.pop("_record", None)
            entry.pop("_from_structlog", None)
            self.sink.enqueue(entry)
        return event_dict

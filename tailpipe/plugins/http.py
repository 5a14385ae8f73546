"""HTTP output: send records to a webhook via httpx, with retry and batching."""

import asyncio
import logging
from typing import Any, Literal

import httpx
from pydantic import Field

from tailpipe.plugins.base import BaseOutput, PluginOptions
from tailpipe.plugins.registry import register_plugin

logger = logging.getLogger(__name__)


class HttpOutputOptions(PluginOptions):
    url: str
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(default=10000, gt=0, description="Request timeout in milliseconds")
    retries: int = Field(default=3, ge=1, description="Total attempts per request")
    retry_delay: float = Field(
        default=1.0, ge=0, description="Base back-off in seconds; doubles each attempt"
    )
    batch_size: int = Field(default=1, ge=1)
    batch_timeout_ms: int = Field(default=5000, ge=0)


@register_plugin("HttpOutput", "output", aliases=("http", "webhook"))
class HttpOutput(BaseOutput):
    """POST/PUT/PATCH records as JSON.

    With ``batchSize`` 1 each record is one request whose body is the record.
    Otherwise records are buffered and sent as a JSON array when the batch is
    full, when ``batchTimeoutMs`` elapses after the first buffered record, or
    on ``aclose()``.

    Usage::

        out = HttpOutput(options={"url": "https://example.test/hook"})
        await out.output({"level": "error"})
        await out.aclose()
    """

    default_name = "HttpOutput"
    options_model = HttpOutputOptions

    def __init__(
        self,
        name: str | None = None,
        options: dict | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(name)
        self.options = HttpOutputOptions.model_validate(options or {})
        self._client = client or httpx.AsyncClient(
            headers={"Content-Type": "application/json", **self.options.headers},
            timeout=self.options.timeout / 1000.0,
        )
        self._batch: list[Any] = []
        self._batch_timer: asyncio.TimerHandle | None = None
        self._flush_tasks: set[asyncio.Task] = set()

    async def output(self, record: Any) -> None:
        if self.options.batch_size == 1:
            await self.send(record)
            return

        self._batch.append(record)
        if len(self._batch) >= self.options.batch_size:
            await self.flush()
        elif self._batch_timer is None:
            loop = asyncio.get_running_loop()
            self._batch_timer = loop.call_later(
                self.options.batch_timeout_ms / 1000.0, self._flush_on_timer
            )

    def _flush_on_timer(self) -> None:
        self._batch_timer = None
        task = asyncio.get_running_loop().create_task(self._flush_logged())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def _flush_logged(self) -> None:
        try:
            await self.flush()
        except httpx.HTTPError:
            logger.exception("Timed batch flush to %s failed", self.options.url)

    async def flush(self) -> None:
        """Send whatever is buffered."""
        if self._batch_timer is not None:
            self._batch_timer.cancel()
            self._batch_timer = None
        if not self._batch:
            return
        records, self._batch = self._batch, []
        await self.send(records)

    async def send(self, body: Any) -> None:
        """Send one JSON request, retrying with exponential back-off.

        Raises:
            httpx.HTTPError: After the last attempt fails.
        """
        attempts = self.options.retries
        for attempt in range(attempts):
            try:
                response = await self._client.request(
                    self.options.method, self.options.url, json=body
                )
                response.raise_for_status()
                return
            except httpx.HTTPError as exc:
                if attempt == attempts - 1:
                    logger.error("HTTP output to %s failed: %s", self.options.url, exc)
                    raise
                logger.warning(
                    "HTTP output retry %d/%d (%s): %s",
                    attempt + 1,
                    attempts,
                    self.options.url,
                    exc,
                )
                await asyncio.sleep(self.options.retry_delay * (2**attempt))

    async def aclose(self) -> None:
        try:
            await self.flush()
        finally:
            if self._flush_tasks:
                await asyncio.gather(*self._flush_tasks, return_exceptions=True)
            await self._client.aclose()

"""
Server-Sent Events transport for realtime change channels.

Each channel is one streaming GET request carrying every filter of the
channel as a query parameter. The stream reports:

- ``event: subscribed`` once the server has registered all filters
- ``event: change`` with a JSON change payload per matching row change
- ``event: error`` when the server rejects or aborts the channel
- ``:`` comment lines as keepalives

Channel health is reported through the status callback: HTTP/network failures
become ``channel_error``, a missing subscription confirmation or a silent
stream become ``timed_out``, and a stream ended by the server is ``closed``.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import structlog

from .config import ServerConfig
from .transport import ChannelBinding, ChannelStatus, StatusHandler

log = structlog.get_logger()

STREAM_PATH = "/realtime/v1/channels/{name}/stream"


class SSEChannel:
    """One live SSE stream. Created and started by ``SSETransport.open_channel``."""

    def __init__(
        self,
        name: str,
        url: str,
        headers: dict[str, str],
        bindings: list[ChannelBinding],
        on_status: StatusHandler,
        subscribe_timeout: float,
        heartbeat_timeout: float,
        connect_timeout: float | None = None,
        verify_tls: bool = True,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.name = name
        self._url = url
        self._headers = headers
        self._bindings = list(bindings)
        self._on_status = on_status
        self._subscribe_timeout = subscribe_timeout
        self._heartbeat_timeout = heartbeat_timeout
        self._connect_timeout = connect_timeout
        self._verify_tls = verify_tls
        self._http_transport = http_transport

        self._subscribed = False
        self._terminal = False
        self._closed = False
        self._task: asyncio.Task | None = None

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"sse-channel:{self.name}")

    def close(self) -> None:
        """Stop the stream. No status is reported after this returns."""
        self._closed = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # Closing from our own status callback: the loop below exits by itself.
        if task is not current:
            task.cancel()

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    def _report(self, status: ChannelStatus, detail: str | None = None) -> None:
        if self._closed or self._terminal:
            return
        if status is not ChannelStatus.SUBSCRIBED:
            self._terminal = True
        try:
            self._on_status(status, detail)
        except Exception:
            log.exception("sse_channel.status_handler_error", channel=self.name, status=status.value)

    async def _run(self) -> None:
        try:
            await self._connect_and_stream()
        except asyncio.CancelledError:
            raise
        except httpx.HTTPStatusError as exc:
            log.warning(
                "sse_channel.http_error",
                channel=self.name,
                status_code=exc.response.status_code,
            )
            self._report(ChannelStatus.CHANNEL_ERROR, f"HTTP {exc.response.status_code}")
        except httpx.HTTPError as exc:
            log.warning("sse_channel.connection_lost", channel=self.name, error=str(exc))
            self._report(ChannelStatus.CHANNEL_ERROR, str(exc) or type(exc).__name__)
        except Exception as exc:
            log.exception("sse_channel.unexpected_error", channel=self.name)
            self._report(ChannelStatus.CHANNEL_ERROR, str(exc) or type(exc).__name__)
        else:
            self._report(ChannelStatus.CLOSED, "stream ended")

    async def _connect_and_stream(self) -> None:
        params = [("filter", binding.filter.to_param()) for binding in self._bindings]

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(None, connect=self._connect_timeout),
            verify=self._verify_tls,
            transport=self._http_transport,
        ) as client:
            async with client.stream("GET", self._url, params=params, headers=self._headers) as response:
                response.raise_for_status()
                log.info("sse_channel.connected", channel=self.name, filters=len(params))

                lines = response.aiter_lines()
                current_event_type: str | None = None
                current_data_lines: list[str] = []

                while not self._closed and not self._terminal:
                    timeout = self._heartbeat_timeout if self._subscribed else self._subscribe_timeout
                    try:
                        line = await asyncio.wait_for(lines.__anext__(), timeout=timeout)
                    except StopAsyncIteration:
                        break
                    except asyncio.TimeoutError:
                        log.warning(
                            "sse_channel.timed_out",
                            channel=self.name,
                            subscribed=self._subscribed,
                            timeout=timeout,
                        )
                        self._report(
                            ChannelStatus.TIMED_OUT,
                            f"no data for {timeout}s" if self._subscribed else "subscription not confirmed",
                        )
                        return

                    line = line.rstrip("\n")
                    if line.startswith("event:"):
                        current_event_type = line[6:].strip()
                    elif line.startswith("data:"):
                        current_data_lines.append(line[5:].strip())
                    elif line.startswith(":") or line.startswith("id:"):
                        # Keepalive comment / ids are not used for resume.
                        pass
                    elif line == "":
                        if current_event_type or current_data_lines:
                            self._handle_event(current_event_type, current_data_lines)
                        current_event_type = None
                        current_data_lines = []

    def _handle_event(self, event_type: str | None, data_lines: list[str]) -> None:
        if event_type == "subscribed":
            self._subscribed = True
            log.info("sse_channel.subscribed", channel=self.name)
            self._report(ChannelStatus.SUBSCRIBED)
            return

        data_str = "\n".join(data_lines)
        if event_type == "error":
            try:
                detail = json.loads(data_str).get("message", data_str)
            except (json.JSONDecodeError, AttributeError):
                detail = data_str
            log.warning("sse_channel.server_error", channel=self.name, detail=detail)
            self._report(ChannelStatus.CHANNEL_ERROR, detail or "server error")
            return

        if event_type not in (None, "change"):
            log.debug("sse_channel.ignored_event", channel=self.name, event_type=event_type)
            return

        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            log.warning("sse_channel.parse_error", channel=self.name, data=data_str[:200])
            return
        if not isinstance(data, dict):
            log.warning("sse_channel.parse_error", channel=self.name, data=data_str[:200])
            return

        self._route(data)

    def _route(self, data: dict[str, Any]) -> None:
        table = str(data.get("table", ""))
        event = str(data.get("eventType") or data.get("event_type") or "")
        tagged = data.get("filter")
        row = data.get("new") or data.get("old")

        for binding in self._bindings:
            if tagged is not None:
                hit = tagged == binding.filter.to_param()
            else:
                hit = binding.filter.matches(table, event, row)
            if not hit:
                continue
            try:
                binding.handler(data)
            except Exception:
                log.exception("sse_channel.handler_error", channel=self.name, table=table)


class SSETransport:
    """``RealtimeTransport`` over Server-Sent Events."""

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        verify_tls: bool = True,
        subscribe_timeout: float = 10.0,
        heartbeat_timeout: float = 90.0,
        connect_timeout: float | None = 30.0,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._verify_tls = verify_tls
        self._subscribe_timeout = subscribe_timeout
        self._heartbeat_timeout = heartbeat_timeout
        self._connect_timeout = connect_timeout
        self._http_transport = http_transport
        self._channels: set[SSEChannel] = set()

    @classmethod
    def from_config(
        cls,
        server: ServerConfig,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> SSETransport:
        return cls(
            url=server.url,
            api_key=server.api_key,
            verify_tls=server.verify_tls,
            subscribe_timeout=server.subscribe_timeout_seconds,
            heartbeat_timeout=server.heartbeat_timeout_seconds,
            connect_timeout=server.request_timeout_seconds,
            http_transport=http_transport,
        )

    def open_channel(
        self,
        name: str,
        bindings: list[ChannelBinding],
        on_status: StatusHandler,
    ) -> SSEChannel:
        headers = {"Accept": "text/event-stream"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        channel = SSEChannel(
            name=name,
            url=self._url + STREAM_PATH.format(name=name),
            headers=headers,
            bindings=bindings,
            on_status=on_status,
            subscribe_timeout=self._subscribe_timeout,
            heartbeat_timeout=self._heartbeat_timeout,
            connect_timeout=self._connect_timeout,
            verify_tls=self._verify_tls,
            http_transport=self._http_transport,
        )
        self._channels = {c for c in self._channels if not c.closed}
        self._channels.add(channel)
        channel.start()
        return channel

    async def aclose(self) -> None:
        """Close every channel this transport opened and wait for them to stop."""
        channels, self._channels = list(self._channels), set()
        for channel in channels:
            channel.close()
        for channel in channels:
            await channel.wait_closed()

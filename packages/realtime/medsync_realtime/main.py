"""
Realtime daemon entry point.

Loads configuration, configures logging, connects the realtime client for the
configured identity and logs every change it receives until SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

import httpx
import structlog

from .client import RealtimeClient
from .config import RealtimeConfig, load_config
from .health import HealthServer
from .lifecycle import SignalLifecycleSource
from .payloads import ChangeEvent
from .sse_transport import SSETransport

SHUTDOWN_TIMEOUT = 15.0


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog with the specified level and format."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
    )


class RealtimeDaemon:
    """Runs one realtime client for the lifetime of the process."""

    def __init__(
        self,
        config: RealtimeConfig,
        identity: str | None,
        topics: list[str] | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._identity = identity
        self._transport = SSETransport.from_config(config.server, http_transport=http_transport)
        self._client = RealtimeClient(self._transport, config)
        self._health = HealthServer(self._client, config.metrics.host, config.metrics.port)
        self._lifecycle_source = SignalLifecycleSource()
        self._topics = topics or self._client.topic_names()
        self._shutdown_event = asyncio.Event()
        self._log = structlog.get_logger()

    @property
    def client(self) -> RealtimeClient:
        return self._client

    def _log_change(self, topic: str):
        def handler(event: ChangeEvent) -> None:
            self._log.info(
                "daemon.change",
                topic=topic,
                event_type=event.event_type.value,
                row_id=event.row.id,
                commit_timestamp=event.commit_timestamp,
            )

        return handler

    async def start(self) -> None:
        for topic in self._topics:
            self._client.subscribe_to_topic(topic, self._log_change(topic))

        if self._config.metrics.enabled:
            try:
                await self._health.start()
                self._log.info(
                    "daemon.health_started",
                    host=self._config.metrics.host,
                    port=self._config.metrics.port,
                )
            except OSError as exc:
                self._log.warning("daemon.health_start_failed", error=str(exc))

        self._lifecycle_source.attach(self._client.lifecycle)
        self._client.on_identity_change(self._identity)
        self._log.info("daemon.started", topics=self._topics, identity_present=bool(self._identity))

    async def stop(self) -> None:
        self._log.info("daemon.stopping")
        self._lifecycle_source.detach()
        self._client.close()
        await self._transport.aclose()
        await self._health.stop()
        self._log.info("daemon.stopped")

    async def run_forever(self) -> None:
        """Run until a shutdown signal arrives."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._shutdown_event.set)

        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await asyncio.wait_for(self.stop(), timeout=SHUTDOWN_TIMEOUT)


def run(argv: list[str] | None = None) -> None:
    """CLI entry point for the realtime daemon."""
    parser = argparse.ArgumentParser(description="MedSync realtime subscription daemon")
    parser.add_argument(
        "-c", "--config",
        default="realtime.yaml",
        help="Path to configuration file (default: realtime.yaml)",
    )
    parser.add_argument(
        "--identity",
        help="Staff id to subscribe for (overrides the configured identity)",
    )
    parser.add_argument(
        "--topic",
        action="append",
        dest="topics",
        help="Topic to log (repeatable, default: all topics)",
    )
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.format)
    log = structlog.get_logger()

    identity = args.identity or config.identity.resolve()
    if not identity:
        log.warning("daemon.no_identity", env=config.identity.env)

    async def _main() -> None:
        daemon = RealtimeDaemon(config, identity, args.topics)
        unknown = set(args.topics or ()) - set(daemon.client.topic_names())
        if unknown:
            print(f"Unknown topic(s): {', '.join(sorted(unknown))}", file=sys.stderr)
            sys.exit(1)
        await daemon.run_forever()

    log.info("daemon.config_loaded", config_path=args.config)
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

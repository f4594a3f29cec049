#!/usr/bin/env python3
"""Async orchestrator for the Paint Bridge daemon.

Architecture:
    main() -> GatewayDaemon -> TaskGroup
        ├── gateway-loop (GatewayService.run, the single inbox consumer)
        ├── serial-open (first serial open; the reconnect policy takes over)
        ├── mqtt-link (MqttTransport)
        └── uptime-clock (GatewayService.run_clock)
"""

from __future__ import annotations

import argparse
import asyncio
import functools
import logging
import sys
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import NoReturn

import msgspec
import tenacity

# uvloop is mandatory; this must fail immediately if it is not installed.
import uvloop

from paintbridge.config.logging import configure_logging
from paintbridge.config.model import RuntimeConfig
from paintbridge.config.settings import load_runtime_config
from paintbridge.config.store import ConfigurationError, ConfigurationStore
from paintbridge.const import (
    DEFAULT_CONFIG_PATH,
    SUPERVISOR_DEFAULT_MAX_BACKOFF,
    SUPERVISOR_DEFAULT_MIN_BACKOFF,
    SUPERVISOR_DEFAULT_RESTART_INTERVAL,
    SUPERVISOR_MIN_RESTART_WINDOW,
)
from paintbridge.services.runtime import GatewayService
from paintbridge.transport.mqtt import mqtt_task

logger = logging.getLogger("paintbridge")


class SupervisedTaskSpec(msgspec.Struct):
    """Describe a supervised async task and its restart policy."""

    name: str
    factory: Callable[[], Awaitable[None]]
    fatal_exceptions: tuple[type[BaseException], ...] = ()
    max_restarts: int | None = None
    restart_interval: float = SUPERVISOR_DEFAULT_RESTART_INTERVAL
    min_backoff: float = SUPERVISOR_DEFAULT_MIN_BACKOFF
    max_backoff: float = SUPERVISOR_DEFAULT_MAX_BACKOFF


class GatewayDaemon:
    """Load settings, build the gateway service and supervise its tasks."""

    def __init__(self, config: RuntimeConfig):
        self.config = config
        self.settings = ConfigurationStore(config.settings_path)
        self.service: GatewayService | None = None

    def _setup_supervision(self, service: GatewayService) -> list[SupervisedTaskSpec]:
        """Prepare the list of tasks to be supervised."""
        return [
            SupervisedTaskSpec(
                name="gateway-loop",
                factory=service.run,
            ),
            SupervisedTaskSpec(
                name="mqtt-link",
                factory=functools.partial(mqtt_task, self.config, service.inbox),
                fatal_exceptions=(RuntimeError,),
            ),
            SupervisedTaskSpec(
                name="uptime-clock",
                factory=service.run_clock,
                max_restarts=5,
            ),
        ]

    async def _supervise_task(self, spec: SupervisedTaskSpec) -> None:
        """Run *spec.factory* restarting it on failures using tenacity."""
        log = logging.getLogger("paintbridge.tasks")
        callbacks = self._SupervisorCallbacks(spec.name, log)

        retryer = tenacity.AsyncRetrying(
            wait=tenacity.wait_exponential(multiplier=spec.min_backoff, max=spec.max_backoff),
            retry=tenacity.retry_if_not_exception_type(
                (asyncio.CancelledError, SystemExit, KeyboardInterrupt, GeneratorExit) + spec.fatal_exceptions
            ),
            stop=(
                tenacity.stop_after_attempt(spec.max_restarts + 1)
                if spec.max_restarts is not None
                else tenacity.stop_never
            ),
            before_sleep=callbacks.before_sleep,
            reraise=True,
        )

        last_start_time = 0.0

        try:
            while True:
                try:
                    async for attempt in retryer:
                        with attempt:
                            last_start_time = time.monotonic()
                            await spec.factory()

                            log.warning("%s task exited cleanly; supervisor exiting", spec.name)
                            return
                except spec.fatal_exceptions as exc:
                    log.critical("%s failed with fatal exception: %s", spec.name, exc)
                    raise
                except Exception:
                    # Healthy runtime resets the backoff.
                    window = max(SUPERVISOR_MIN_RESTART_WINDOW, spec.restart_interval)
                    if last_start_time > 0 and (time.monotonic() - last_start_time) > window:
                        log.info("%s was healthy long enough; resetting backoff", spec.name)
                        continue
                    log.error("%s exceeded max restarts (%s); giving up", spec.name, spec.max_restarts)
                    raise
        except asyncio.CancelledError:
            log.debug("%s supervisor cancelled", spec.name)
            raise

    class _SupervisorCallbacks:
        """Helper to avoid nested functions in supervisor."""

        __slots__ = ("name", "log")

        def __init__(self, name: str, log: logging.Logger):
            self.name = name
            self.log = log

        def before_sleep(self, retry_state: tenacity.RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            self.log.error("%s failed (%s); restarting in %.1fs", self.name, exc, delay)

    async def run(self) -> None:
        """Main async entry point."""
        await self.settings.load()
        service = self.service = GatewayService(self.config, self.settings)
        supervised_tasks = self._setup_supervision(service)

        try:
            async with asyncio.TaskGroup() as task_group:
                for spec in supervised_tasks:
                    task_group.create_task(self._supervise_task(spec), name=spec.name)
                task_group.create_task(service.start_link(), name="serial-open")
        except* asyncio.CancelledError:
            logger.info("Main task cancelled; shutting down.")
        except* Exception as exc_group:
            for group_exc in exc_group.exceptions:
                logger.critical(
                    "Unhandled exception in main task group: %s",
                    group_exc,
                    exc_info=group_exc,
                )
            raise
        finally:
            await service.shutdown()
            logger.info("Paint Bridge daemon stopped.")


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="paintbridge", description="Paint controller serial/MQTT gateway")
    parser.add_argument(
        "-c",
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"runtime configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> NoReturn:  # pragma: no cover (Entry point wrapper)
    args = _parse_args(argv)
    try:
        config = load_runtime_config(args.config)
    except ValueError as exc:
        print(f"paintbridge: {exc}", file=sys.stderr)
        sys.exit(1)
    if args.debug:
        config.debug_logging = True
    configure_logging(config)

    logger.info(
        "Starting Paint Bridge daemon. Serial: %s@%d MQTT: %s:%d",
        config.serial_port,
        config.serial_baud,
        config.mqtt_host,
        config.mqtt_port,
    )

    try:
        daemon = GatewayDaemon(config)
        asyncio.run(daemon.run(), loop_factory=uvloop.new_event_loop)
    except KeyboardInterrupt:
        logger.info("Daemon interrupted by user.")
        sys.exit(0)
    except ConfigurationError as exc:
        logger.critical("Settings could not be loaded: %s", exc)
        sys.exit(1)
    except RuntimeError as exc:
        logger.critical("Startup aborted due to runtime error: %s", exc)
        sys.exit(1)
    except ExceptionGroup as exc_group:
        for group_exc in exc_group.exceptions:
            logger.critical("Fatal error in task group: %s", group_exc, exc_info=group_exc)
        sys.exit(1)
    except OSError as exc:
        logger.critical("System/OS error during daemon execution: %s", exc, exc_info=True)
        sys.exit(1)
    except BaseException as exc:
        logger.critical(
            "CRITICAL: Unhandled non-standard exception. Terminating: %s",
            exc,
            exc_info=True,
        )
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()

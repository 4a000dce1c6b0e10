"""
Entry point for piping a terminal through one MQTT stream.

Usage:
    FEEDLINK_USERNAME=... FEEDLINK_KEY=... python -m feedlink --stream-id pump-1

Every stdin line is published to ``{identity}/{channel_type}/{stream_id}`` and
every message received on ``.../json`` is written to stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import threading
from concurrent.futures import Executor, Future
from contextlib import suppress
from typing import Optional, Sequence

from asgiref.sync import sync_to_async

from feedlink.adapters.duplex import DuplexAdapter
from feedlink.errors import StreamConfigError
from feedlink.services.stream_config import StreamConfig, load_stream_config
from feedlink.telemetry.logging import configure_logging

logger = logging.getLogger("feedlink")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="feedlink", description="Pipe stdin/stdout through an MQTT stream")
    parser.add_argument("--stream-id", help="override FEEDLINK_STREAM_ID")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument(
        "--listen-only",
        action="store_true",
        help="do not read stdin; print received messages until interrupted",
    )
    return parser


class DaemonThreadExecutor(Executor):
    """每次调用开一个 daemon 线程，退出时不 join。

    阻塞在 stdin.readline 的线程不能拖住 Ctrl-C 后的进程退出；
    loop 的默认线程池会在 asyncio.run 收尾时被 join。
    """

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()

        def _run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as exc:
                future.set_exception(exc)

        threading.Thread(target=_run, name="feedlink-stdin", daemon=True).start()
        return future


stdin_executor = DaemonThreadExecutor()


def _write_stdout(chunk: bytes) -> None:
    sys.stdout.buffer.write(chunk.rstrip(b"\n") + b"\n")
    sys.stdout.buffer.flush()


async def _pump_stdin(adapter: DuplexAdapter) -> None:
    readline = sync_to_async(sys.stdin.readline, thread_sensitive=False, executor=stdin_executor)
    while True:
        line = await readline()
        if not line:
            return
        if line.strip():
            await adapter.write(line)


async def run(config: StreamConfig, *, stream_id: Optional[str] = None, listen_only: bool = False) -> None:
    adapter = DuplexAdapter(config)
    adapter.on("error", lambda exc: logger.error(f"stream error: {exc}"))
    adapter.on("connected", lambda: logger.info(f"streaming {adapter.connection.subscribe_topic}"))
    adapter.connect(stream_id)

    reader = asyncio.create_task(adapter.pipe_to(_write_stdout), name="feedlink-stdout")
    try:
        if listen_only:
            await reader
        else:
            await _pump_stdin(adapter)
    finally:
        reader.cancel()
        with suppress(asyncio.CancelledError):
            await reader
        adapter.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        config = load_stream_config()
    except StreamConfigError as exc:
        logger.error(str(exc))
        return 2
    try:
        asyncio.run(run(config, stream_id=args.stream_id, listen_only=args.listen_only))
    except StreamConfigError as exc:
        logger.error(str(exc))
        return 2
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())

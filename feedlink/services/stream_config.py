"""Stream config helpers shared by the connection manager and the CLI."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from feedlink.errors import StreamConfigError
from feedlink.schemas.stream import SECURE_PORT, StreamOptions


@dataclass(frozen=True)
class StreamConfig:
    host: str
    port: int
    channel_type: str
    identity: str
    credential_name: str
    credential_secret: str
    stream_id: str

    @property
    def secure(self) -> bool:
        return self.port == SECURE_PORT

    def with_stream_id(self, stream_id: Optional[str]) -> "StreamConfig":
        """Return a copy bound to ``stream_id``; ``None`` or empty keeps the current one."""

        if not stream_id or stream_id == self.stream_id:
            return self
        return replace(self, stream_id=stream_id)


def resolve_stream_config(options: Union[StreamOptions, Mapping[str, Any]]) -> StreamConfig:
    if not isinstance(options, StreamOptions):
        try:
            options = StreamOptions(**dict(options))
        except ValidationError as exc:
            raise StreamConfigError(f"invalid stream options: {exc}") from exc

    return StreamConfig(
        host=options.host,
        port=int(options.port),
        channel_type=options.channel_type,
        identity=options.identity,
        credential_name=options.credential_name or options.identity,
        credential_secret=options.credential_secret,
        stream_id=options.stream_id,
    )


def load_stream_config(environ: Optional[Mapping[str, str]] = None) -> StreamConfig:
    try:
        options = StreamOptions.from_env(environ)
    except ValidationError as exc:
        raise StreamConfigError(f"invalid FEEDLINK_* environment: {exc}") from exc
    return resolve_stream_config(options)


__all__ = ["StreamConfig", "load_stream_config", "resolve_stream_config"]

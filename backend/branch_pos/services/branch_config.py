# Overview: Branch configuration snapshot and the read interface the router consumes.

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Callable, Protocol

from ..constants import DatabaseEngine, SslMode


ConfigChangedCallback = Callable[[int], None]


@dataclass(frozen=True)
class BranchConfig:
    """
    Immutable snapshot of one branch's settings as seen by the core.

    Only the connection fields feed fingerprint(); tax rate and currency can
    change without rebuilding a database handle.
    """
    branch_id: int
    code: str
    engine: DatabaseEngine
    server: str | None = None
    port: int | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = None
    additional_params: str | None = None
    ssl_mode: SslMode = SslMode.DISABLE
    trust_server_certificate: bool = False
    tax_rate_bps: int = 0
    currency: str = "USD"

    def connection_fields(self) -> dict:
        return {
            "code": self.code,
            "engine": self.engine.value,
            "server": self.server,
            "port": self.port,
            "database": self.database,
            "username": self.username,
            "password": self.password,
            "additional_params": self.additional_params,
            "ssl_mode": self.ssl_mode.value,
            "trust_server_certificate": self.trust_server_certificate,
        }

    def fingerprint(self) -> str:
        payload = json.dumps(self.connection_fields(), sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class BranchConfigProvider(Protocol):
    """Read interface over branch configuration, plus the config-changed event."""

    def get_config(self, branch_id: int) -> BranchConfig:
        ...

    def subscribe(self, callback: ConfigChangedCallback) -> None:
        ...


def parse_additional_params(raw: str | None) -> dict[str, str]:
    """
    Parse "key=value;key2=value2" driver parameters.

    Empty segments are ignored; a segment without '=' is rejected.
    """
    params: dict[str, str] = {}
    if not raw:
        return params
    for segment in raw.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        if "=" not in segment:
            raise ValueError(f"invalid connection parameter {segment!r} (expected key=value)")
        key, value = segment.split("=", 1)
        params[key.strip()] = value.strip()
    return params

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional


@dataclass(frozen=True)
class ProtocolStamp:
    protocol: str
    hash: str
    canonical: str
    issued_at: datetime


def iso_timestamp(ts: datetime) -> str:
    """UTC ISO-8601 with milliseconds and a trailing Z."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc)
    return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def canonical_string(
    ts: datetime,
    supervisor_id: str,
    unit_id: str,
    template_id: str,
    scope_id: str,
    ip: Optional[str] = "",
    device_id: Optional[str] = "",
) -> str:
    parts = [
        f"ts={iso_timestamp(ts)}",
        f"supervisor={supervisor_id}",
        f"unidade={unit_id}",
        f"template={template_id}",
        f"escopo={scope_id}",
        f"ip={ip or ''}",
        f"device={device_id or ''}",
    ]
    return "|".join(parts)


def generate_protocol(
    ts: datetime,
    supervisor_id: str,
    unit_id: str,
    template_id: str,
    scope_id: str,
    ip: Optional[str] = "",
    device_id: Optional[str] = "",
    *,
    prefix: str = "KL",
) -> ProtocolStamp:
    canonical = canonical_string(ts, supervisor_id, unit_id, template_id, scope_id, ip, device_id)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    day = iso_timestamp(ts)[:10].replace("-", "")
    return ProtocolStamp(
        protocol=f"{prefix}-{day}-{digest[:8].upper()}",
        hash=digest,
        canonical=canonical,
        issued_at=ts,
    )


def client_ip(headers: Mapping[str, str]) -> str:
    forwarded = (headers.get("x-forwarded-for") or "").strip()
    if forwarded:
        return forwarded.split(",")[0].strip()
    return (headers.get("x-real-ip") or "").strip()

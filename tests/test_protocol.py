from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone

from checklists.protocol import canonical_string, client_ip, generate_protocol, iso_timestamp

TS = datetime(2026, 10, 19, 14, 5, 9, 123000, tzinfo=timezone.utc)


def test_iso_timestamp_has_milliseconds_and_z() -> None:
    assert iso_timestamp(TS) == "2026-10-19T14:05:09.123Z"
    assert iso_timestamp(datetime(2026, 1, 2, 3, 4, 5)) == "2026-01-02T03:04:05.000Z"


def test_canonical_string_field_order_is_fixed() -> None:
    canonical = canonical_string(TS, "sup-1", "un-1", "tpl-1", "esc-1", "10.0.0.1", "dev-9")
    assert canonical == (
        "ts=2026-10-19T14:05:09.123Z|supervisor=sup-1|unidade=un-1|template=tpl-1"
        "|escopo=esc-1|ip=10.0.0.1|device=dev-9"
    )
    assert canonical_string(TS, "s", "u", "t", "e").endswith("|ip=|device=")


def test_generate_protocol_is_reproducible() -> None:
    a = generate_protocol(TS, "sup-1", "un-1", "tpl-1", "esc-1", "10.0.0.1", "dev-9")
    b = generate_protocol(TS, "sup-1", "un-1", "tpl-1", "esc-1", "10.0.0.1", "dev-9")
    assert a == b
    assert re.fullmatch(r"KL-20261019-[0-9A-F]{8}", a.protocol)
    assert a.hash == hashlib.sha256(a.canonical.encode("utf-8")).hexdigest()
    assert a.protocol.endswith(a.hash[:8].upper())


def test_generate_protocol_changes_with_inputs_and_prefix() -> None:
    a = generate_protocol(TS, "sup-1", "un-1", "tpl-1", "esc-1")
    b = generate_protocol(TS, "sup-2", "un-1", "tpl-1", "esc-1")
    assert a.hash != b.hash
    assert generate_protocol(TS, "sup-1", "un-1", "tpl-1", "esc-1", prefix="CK").protocol.startswith("CK-20261019-")


def test_client_ip_prefers_first_forwarded_entry() -> None:
    assert client_ip({"x-forwarded-for": "203.0.113.7, 10.0.0.2", "x-real-ip": "10.0.0.9"}) == "203.0.113.7"
    assert client_ip({"x-real-ip": "10.0.0.9"}) == "10.0.0.9"
    assert client_ip({}) == ""

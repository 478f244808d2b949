from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid6 import uuid7


def _generate_command_id() -> str:
    return str(uuid7())


def _now_iso8601_utc_ms() -> str:
    now = datetime.now(tz=timezone.utc)
    # Ensure milliseconds and trailing Z
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_payload(
    point_id: str,
    value: Any,
    *,
    source: Optional[str] = None,
    trace: bool = False,
) -> Dict[str, Any]:
    base: Dict[str, Any] = {
        "timestamp_utc": _now_iso8601_utc_ms(),
        "uuid": point_id,
        "value": value,
    }
    if source:
        base["source"] = source
        if trace:
            base["command_id"] = _generate_command_id()
    return base


def encode_payload(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


def parse_payload(text: str) -> Any:
    """
    Extracts the value from a point message.

    Accepts a JSON object with a "value" key or a bare value. Anything that
    is not JSON is returned stripped, as sent.
    """
    stripped = text.strip()
    try:
        data = json.loads(stripped)
    except ValueError:
        return stripped
    if isinstance(data, dict):
        return data.get("value")
    return data

"""Client side of the status contract: poll a meeting until it is terminal."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

import httpx

from recap.models.meeting import TERMINAL_STATUSES, MeetingStatus

DEFAULT_INTERVAL = 3.0


def poll_meeting(
    base_url: str,
    meeting_id: int,
    owner_id: str,
    interval: float = DEFAULT_INTERVAL,
    timeout: Optional[float] = None,
    client: Optional[httpx.Client] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Fetch ``/meetings/{id}`` every ``interval`` seconds until completed or failed.

    Returns the final meeting payload. Raises TimeoutError if ``timeout``
    elapses first and httpx.HTTPStatusError on non-2xx responses.
    """
    terminal = {s.value for s in TERMINAL_STATUSES}
    own_client = client is None
    http = client or httpx.Client(base_url=base_url)
    deadline = None if timeout is None else time.monotonic() + timeout
    try:
        while True:
            r = http.get(f"/meetings/{meeting_id}", headers={"X-User-Id": owner_id})
            r.raise_for_status()
            payload = r.json()
            if payload.get("status") in terminal:
                return payload
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError(
                    f"Meeting {meeting_id} still {payload.get('status', MeetingStatus.UPLOADING.value)} after {timeout}s"
                )
            sleep(interval)
    finally:
        if own_client:
            http.close()

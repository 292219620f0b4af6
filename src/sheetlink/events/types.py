"""Message type constants for everything pushed to WebSocket clients.

Learn: Centralizing message types as constants prevents typos between
the producers (webhook receiver, job queue) and the frontend hooks that
switch on `type`.
"""

# ─── Sheet channel ───────────────────────────────────────

SUBSCRIBED = "subscribed"
SHEET_UPDATE = "sheet_update"

# ─── Job channel ─────────────────────────────────────────

JOB_STATUS = "job_status"

# ─── Connection housekeeping ─────────────────────────────

PING = "ping"
PONG = "pong"
ERROR = "error"


def job_channel(job_id: str) -> str:
    """Broadcaster channel carrying updates for one job."""
    return f"job:{job_id}"

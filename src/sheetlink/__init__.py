"""SheetLink — realtime relay between Smartsheet and chat clients.

Keeps browser clients in sync with Smartsheet: signed webhooks
invalidate the sheet cache and fan out over WebSockets, and long
AI-driven sheet edits run on a background job queue.
"""

__version__ = "0.1.0"

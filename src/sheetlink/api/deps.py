"""FastAPI dependencies shared by the HTTP and WebSocket routes."""

from starlette.requests import HTTPConnection

from sheetlink.services.container import Services


def get_services(conn: HTTPConnection) -> Services:
    """The app's Services instance (built by create_app)."""
    return conn.app.state.services

"""Thin Smartsheet REST client — just what the relay needs.

Learn: The full SDK wrapper (columns, attachments, sharing, …) lives
elsewhere. Here we only read a whole sheet (to repopulate the cache and
to feed column-transform jobs) and write rows back.
"""

from typing import Any, Optional, Protocol

import httpx
import structlog

logger = structlog.get_logger()


class SheetClientError(Exception):
    """Smartsheet answered with an error or could not be reached."""
    pass


class SheetClient(Protocol):
    async def get_sheet(self, sheet_id: str) -> dict[str, Any]: ...

    async def update_rows(self, sheet_id: str, rows: list[dict[str, Any]]) -> dict[str, Any]: ...


class SmartsheetClient:
    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.smartsheet.com/2.0",
        *,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self._http = http or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    async def get_sheet(self, sheet_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/sheets/{sheet_id}")

    async def update_rows(self, sheet_id: str, rows: list[dict[str, Any]]) -> dict[str, Any]:
        """Update cells on existing rows: [{"id": rowId, "cells": [{"columnId", "value"}]}]."""
        return await self._request("PUT", f"/sheets/{sheet_id}/rows", json=rows)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            r = await self._http.request(method, path, **kwargs)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "smartsheet.error", path=path, status=e.response.status_code
            )
            raise SheetClientError(
                f"Smartsheet {method} {path} failed: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.warning("smartsheet.unreachable", path=path, error=str(e))
            raise SheetClientError(f"Smartsheet {method} {path} failed: {e}") from e
        return r.json()

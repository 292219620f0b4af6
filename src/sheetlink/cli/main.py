"""SheetLink CLI — run the server, sign test webhooks, drive jobs.

Usage:
    sheetlink serve                                  # Run the API + WebSocket server
    sheetlink sign payload.json --secret s3cr3t      # Print the webhook signature
    sheetlink send-webhook payload.json              # POST a signed callback locally
    sheetlink transform 123 -s 111 -s 222 -t 333 --operation SUMMARIZE --wait
    sheetlink status <job_id>                        # Show a job
    sheetlink cleanup                                # Run the retention sweep now
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
import time
from typing import Optional

import click
import httpx

from sheetlink import __version__
from sheetlink.services.webhook_receiver import SIGNATURE_HEADER, compute_signature

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("SHEETLINK_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0)


def _secret(secret: Optional[str]) -> str:
    value = secret or os.environ.get("SHEETLINK_WEBHOOK_SECRET")
    if not value:
        click.secho(
            "Error: --secret required (or set SHEETLINK_WEBHOOK_SECRET)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return value


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _status_color(status: str) -> str:
    colors = {
        "pending": "yellow",
        "running": "cyan",
        "completed": "green",
        "failed": "red",
    }
    return colors.get(status, "white")


def _print_job(job: dict) -> None:
    status = click.style(job["status"], fg=_status_color(job["status"]))
    progress = job.get("progress", {})
    click.echo(
        f"Job {job['id']}  {job['kind']}  {status}  "
        f"{progress.get('processed', 0)}/{progress.get('total', 0)} rows, "
        f"{progress.get('failed', 0)} failed"
    )
    if job.get("error"):
        click.secho(f"  error: {job['error']}", fg="red")
    if job.get("result") is not None:
        click.echo(f"  result: {json.dumps(job['result'], default=str)}")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="sheetlink")
def main():
    """SheetLink — realtime Smartsheet relay."""


@main.command()
@click.option("--host", default=None, help="Bind address (default: SHEETLINK_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: SHEETLINK_PORT)")
@click.option("--reload", is_flag=True, help="Reload on code changes (dev only)")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the HTTP + WebSocket server."""
    import uvicorn

    from sheetlink.config import Settings

    settings = Settings()
    uvicorn.run(
        "sheetlink.main:create_app",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@main.command()
@click.argument("body", type=click.File("rb"))
@click.option("--secret", help="Shared webhook secret (or SHEETLINK_WEBHOOK_SECRET)")
def sign(body, secret: Optional[str]):
    """Print the Smartsheet-Hmac-SHA256 signature for a body file ('-' for stdin)."""
    click.echo(compute_signature(_secret(secret), body.read()))


@main.command("send-webhook")
@click.argument("body", type=click.File("rb"))
@click.option("--secret", help="Shared webhook secret (or SHEETLINK_WEBHOOK_SECRET)")
def send_webhook(body, secret: Optional[str]):
    """POST a signed callback to the local server, as Smartsheet would."""
    raw = body.read()
    signature = compute_signature(_secret(secret), raw)
    asyncio.run(_send_webhook_impl(raw, signature))


async def _send_webhook_impl(raw: bytes, signature: str):
    async with _client() as c:
        r = await c.post(
            "/smartsheet/webhook",
            content=raw,
            headers={SIGNATURE_HEADER: signature, "Content-Type": "application/json"},
        )
    color = "green" if r.status_code == 200 else "red"
    click.secho(f"HTTP {r.status_code}", fg=color)
    click.echo(_pretty_json(r.json()))


@main.command()
@click.argument("sheet_id")
@click.option("--source", "-s", "sources", multiple=True, required=True, help="Source column id (repeatable)")
@click.option("--target", "-t", required=True, help="Target column id")
@click.option(
    "--operation", "-o",
    type=click.Choice(["SUMMARIZE", "SCORE_ALIGNMENT", "EXTRACT_TERMS"]),
    default="SUMMARIZE",
)
@click.option("--wait", is_flag=True, help="Poll until the job finishes")
def transform(sheet_id: str, sources: tuple[str, ...], target: str, operation: str, wait: bool):
    """Start a column-transform job on SHEET_ID."""
    asyncio.run(_transform_impl(sheet_id, list(sources), target, operation, wait))


async def _transform_impl(sheet_id: str, sources: list[str], target: str, operation: str, wait: bool):
    async with _client() as c:
        r = await c.post("/api/jobs/column-transform", json={
            "sheetId": sheet_id,
            "sourceColumns": sources,
            "targetColumn": target,
            "operation": {"type": operation},
        })
        if r.status_code != 202:
            click.secho(f"Error: {r.json().get('error', r.text)}", fg="red", err=True)
            sys.exit(1)
        job_id = r.json()["jobId"]
        click.secho(f"Job {job_id} queued", fg="green")

        if not wait:
            return

        while True:
            r = await c.get(f"/api/jobs/{job_id}")
            r.raise_for_status()
            job = r.json()
            if job["status"] in ("completed", "failed"):
                _print_job(job)
                return
            progress = job["progress"]
            click.echo(f"  {job['status']}: {progress['processed']}/{progress['total']}")
            await asyncio.sleep(2.0)


@main.command()
@click.argument("job_id")
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def status(job_id: str, as_json: bool):
    """Show a job's status."""
    asyncio.run(_status_impl(job_id, as_json))


async def _status_impl(job_id: str, as_json: bool):
    async with _client() as c:
        r = await c.get(f"/api/jobs/{job_id}")
    if r.status_code == 404:
        click.secho(f"Job {job_id} not found", fg="red", err=True)
        sys.exit(1)
    r.raise_for_status()
    if as_json:
        click.echo(_pretty_json(r.json()))
    else:
        _print_job(r.json())


@main.command()
@click.argument("job_id")
def cancel(job_id: str):
    """Cancel a pending or running job."""
    asyncio.run(_cancel_impl(job_id))


async def _cancel_impl(job_id: str):
    async with _client() as c:
        r = await c.post(f"/api/jobs/{job_id}/cancel")
    if r.status_code == 404:
        click.secho(f"Job {job_id} not found", fg="red", err=True)
        sys.exit(1)
    if r.status_code == 409:
        click.secho(r.json()["error"], fg="yellow", err=True)
        sys.exit(1)
    r.raise_for_status()
    click.secho(f"Cancellation requested for {job_id}", fg="green")


@main.command()
def cleanup():
    """Delete finished jobs past the retention window, now."""
    asyncio.run(_cleanup_impl())


async def _cleanup_impl():
    started = time.perf_counter()
    async with _client() as c:
        r = await c.post("/api/jobs/cleanup")
        r.raise_for_status()
    click.echo(
        f"Removed {r.json()['removed']} job(s) in {time.perf_counter() - started:.2f}s"
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()

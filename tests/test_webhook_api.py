"""POST /smartsheet/webhook tests — handshake, change events, rejections.

Learn: The observable effects of a change batch are (1) the sheet's cache
entry is invalidated and (2) every subscriber of that sheet gets one
sheet_update per change. A rejected callback must have neither effect.
"""

import pytest

from sheetlink.services.sheet_cache import CacheState

URL = "/smartsheet/webhook"


@pytest.mark.asyncio
async def test_challenge_echoed(client, sign):
    """Enabling a webhook: the challenge token comes straight back."""
    body = b'{"challenge":"token-123","webhookId":"wh-1"}'
    resp = await client.post(URL, content=body, headers=sign(body))
    assert resp.status_code == 200
    assert resp.json() == {"smartsheetHookResponse": "token-123"}


@pytest.mark.asyncio
async def test_event_batch_invalidates_and_broadcasts(client, services, sign, event_batch, make_connection):
    """One change → cache entry invalidated, subscribers get one sheet_update."""
    services.cache.set("42", {"rows": []})
    conn = make_connection()
    services.broadcaster.subscribe("42", conn)

    body = event_batch("42", [("row", "updated")])
    resp = await client.post(URL, content=body, headers=sign(body))

    assert resp.status_code == 200
    assert resp.json() == {"status": "success"}
    assert services.cache.status("42") is CacheState.INVALIDATED
    await services.broadcaster.drain()
    assert conn.sent == [{
        "type": "sheet_update",
        "sheetId": "42",
        "change": {
            "type": "row",
            "action": "updated",
            "id": "obj-0",
            "timestamp": "2024-05-01T12:00:00Z",
        },
    }]


@pytest.mark.asyncio
async def test_one_message_per_change_in_order(client, services, sign, event_batch, make_connection):
    conn = make_connection()
    services.broadcaster.subscribe("42", conn)

    changes = [("row", "created"), ("row", "updated"), ("sheet", "updated")]
    body = event_batch("42", changes)
    resp = await client.post(URL, content=body, headers=sign(body))

    assert resp.status_code == 200
    await services.broadcaster.drain()
    assert [(m["change"]["type"], m["change"]["action"]) for m in conn.sent] == changes


@pytest.mark.asyncio
async def test_other_sheets_untouched(client, services, sign, event_batch, make_connection):
    """Subscribers and cache entries of other sheets see nothing."""
    services.cache.set("7", {"rows": []})
    other = make_connection()
    services.broadcaster.subscribe("7", other)

    body = event_batch("42")
    resp = await client.post(URL, content=body, headers=sign(body))

    assert resp.status_code == 200
    await services.broadcaster.drain()
    assert other.sent == []
    assert services.cache.get("7") == {"rows": []}


@pytest.mark.asyncio
async def test_no_subscribers_still_succeeds(client, services, sign, event_batch):
    services.cache.set("42", {"rows": []})
    body = event_batch("42")
    resp = await client.post(URL, content=body, headers=sign(body))
    assert resp.status_code == 200
    assert services.cache.get("42") is None


@pytest.mark.asyncio
async def test_empty_event_list(client, services, sign, event_batch):
    services.cache.set("42", {"rows": []})
    body = event_batch("42", [])
    resp = await client.post(URL, content=body, headers=sign(body))
    assert resp.status_code == 200
    assert services.cache.get("42") == {"rows": []}


# ═══════════════════════════════════════════════════════════
# Rejections
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_missing_signature_401(client, services, event_batch, make_connection):
    services.cache.set("42", {"rows": []})
    conn = make_connection()
    services.broadcaster.subscribe("42", conn)

    resp = await client.post(URL, content=event_batch("42"))

    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid signature"}
    assert services.cache.get("42") == {"rows": []}
    assert conn.sent == []


@pytest.mark.asyncio
async def test_wrong_secret_401(client, services, sign, event_batch, make_connection):
    conn = make_connection()
    services.broadcaster.subscribe("42", conn)
    body = event_batch("42")
    resp = await client.post(URL, content=body, headers=sign(body, secret="someone-else"))
    assert resp.status_code == 401
    assert conn.sent == []


@pytest.mark.asyncio
async def test_body_tampered_after_signing_401(client, sign, event_batch):
    body = event_batch("42")
    headers = sign(body)
    resp = await client.post(URL, content=event_batch("43"), headers=headers)
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_malformed_body_400(client, services, sign, make_connection):
    """Correctly signed garbage: 400, nothing invalidated, nothing sent."""
    services.cache.set("42", {"rows": []})
    conn = make_connection()
    services.broadcaster.subscribe("42", conn)

    body = b'{"webhookId":"wh-1","scope":"sheet","scopeObjectId":"42","events":[{"objectType":"row"}]}'
    resp = await client.post(URL, content=body, headers=sign(body))

    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid event format"}
    assert services.cache.get("42") == {"rows": []}
    assert conn.sent == []


@pytest.mark.asyncio
async def test_unexpected_error_500(client, services, sign, event_batch, monkeypatch):
    def boom(sheet_id):
        raise RuntimeError("cache on fire")

    monkeypatch.setattr(services.cache, "invalidate", boom)
    body = event_batch("42")
    resp = await client.post(URL, content=body, headers=sign(body))

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}

    # Server keeps serving
    resp = await client.get("/api/health")
    assert resp.status_code == 200

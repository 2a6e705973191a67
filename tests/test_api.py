"""HTTP surface: generations, tokens, packages, session tracks."""

import pytest
from beanie import PydanticObjectId

from app.models.token_package import TokenPackage
from app.workflows.generation_agent import wait_for_generation

pytestmark = pytest.mark.asyncio


def _headers(user, session: str = "tab-1") -> dict:
    return {"X-User-Id": str(user.id), "X-Session-Id": session}


async def test_requires_identity(client):
    r = await client.get("/v1/tokens/balance")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHORIZED"
    r = await client.get("/v1/tokens/balance", headers={"X-User-Id": str(PydanticObjectId())})
    assert r.status_code == 401


async def test_generation_round_trip(client, make_account):
    user = await make_account(balance=100)
    h = _headers(user)
    r = await client.post("/v1/generations", json={"prompt": "rainy day jazz", "model": "V4", "duration_seconds": 90}, headers=h)
    assert r.status_code == 202
    body = r.json()
    assert body["status"] == "pending"
    assert body["tokens_used"] == 30
    gen_id = PydanticObjectId(body["id"])

    await wait_for_generation(user.id, gen_id)

    r = await client.get(f"/v1/generations/{gen_id}", headers=h)
    assert r.json()["status"] == "completed"
    assert r.json()["title"] == "Generation 1"

    r = await client.get("/v1/session/tracks", headers=h)
    tracks = r.json()
    assert [t["id"] for t in tracks["tracks"]] == [str(gen_id)]
    assert tracks["active_id"] == str(gen_id)
    assert tracks["tracks"][0]["audio_url"].startswith("https://")

    # another session of the same user sees nothing
    r = await client.get("/v1/session/tracks", headers=_headers(user, "tab-2"))
    assert r.json()["tracks"] == []

    r = await client.get("/v1/tokens/balance", headers=h)
    assert r.json() == {"balance": 70, "total_purchased": 0, "total_used": 30}

    r = await client.get("/v1/tokens/transactions", headers=h)
    txs = r.json()["transactions"]
    assert len(txs) == 1
    assert txs[0]["type"] == "usage"
    assert txs[0]["token_amount"] == -30
    assert txs[0]["generation_id"] == str(gen_id)

    r = await client.get("/v1/generations", headers=h)
    page = r.json()
    assert page["total"] == 1
    assert page["items"][0]["duration"] == "1m 30s"

    r = await client.delete("/v1/session", headers=h)
    assert r.json() == {"status": "ended", "tracks_dropped": 1}
    r = await client.get("/v1/session/tracks", headers=h)
    assert r.json()["tracks"] == []


async def test_insufficient_balance_response(client, make_account):
    user = await make_account(balance=5)
    r = await client.post("/v1/generations", json={"prompt": "big band", "model": "V3_5", "duration_seconds": 60}, headers=_headers(user))
    assert r.status_code == 402
    err = r.json()["error"]
    assert err["code"] == "INSUFFICIENT_BALANCE"
    assert err["details"] == {"required": 10, "top_up": "/v1/packages", "balance": 5}
    r = await client.get("/v1/generations", headers=_headers(user))
    assert r.json()["total"] == 0


async def test_invalid_request_response(client, make_account):
    user = await make_account(balance=100)
    r = await client.post("/v1/generations", json={"prompt": "", "model": "V3_5", "duration_seconds": 60}, headers=_headers(user))
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_REQUEST"
    r = await client.post("/v1/generations", json={"prompt": "x", "model": "V9", "duration_seconds": 60}, headers=_headers(user))
    assert r.status_code == 422


async def test_packages_and_purchase(client, make_account):
    user = await make_account(balance=0)
    pro = TokenPackage(name="Pro", token_amount=1200, price_usd=19.99, display_order=2)
    starter = TokenPackage(name="Starter", token_amount=500, price_usd=9.99, display_order=1)
    legacy = TokenPackage(name="Legacy", token_amount=50, price_usd=1.0, display_order=0, is_active=False)
    for p in (pro, starter, legacy):
        await p.insert()

    r = await client.get("/v1/packages")
    assert [p["name"] for p in r.json()["packages"]] == ["Starter", "Pro"]

    r = await client.post(f"/v1/packages/{starter.id}/purchase", headers=_headers(user))
    assert r.status_code == 200
    assert r.json()["balance"] == 500

    r = await client.post(f"/v1/packages/{legacy.id}/purchase", headers=_headers(user))
    assert r.status_code == 404

    r = await client.get("/v1/tokens/balance", headers=_headers(user))
    assert r.json()["total_purchased"] == 500
    r = await client.get("/v1/tokens/transactions", headers=_headers(user))
    tx = r.json()["transactions"][0]
    assert tx["type"] == "purchase"
    assert tx["package_name"] == "Starter"
    assert tx["price_usd"] == 9.99


async def test_stats_and_pricing(client, make_account):
    user = await make_account(balance=100)
    r = await client.get("/v1/generations/stats", headers=_headers(user))
    stats = r.json()
    assert stats["monthly_generations"] == 0
    assert stats["favorite_model"] == "V3_5"
    assert stats["token_balance"] == 100

    r = await client.get("/v1/generations/quote", params={"model": "V4_5", "duration_seconds": 61})
    assert r.json()["tokens"] == 50
    r = await client.get("/v1/generations/pricing")
    assert [m["tokens_per_minute"] for m in r.json()["models"]] == [10, 15, 25]


async def test_select_unknown_track(client, make_account):
    user = await make_account(balance=100)
    r = await client.post("/v1/session/tracks/nope/select", headers=_headers(user))
    assert r.status_code == 404
    r = await client.get("/v1/generations/not-an-id", headers=_headers(user))
    assert r.status_code == 400


async def test_history_search(client, make_account, fake_provider):
    from app.workflows.generation_agent import submit_generation
    user = await make_account(balance=100)
    for prompt in ("Rainy day jazz", "Desert techno"):
        record = await submit_generation(user.id, prompt, "V3_5", 30, provider=fake_provider())
        await wait_for_generation(user.id, record.id)

    r = await client.get("/v1/generations", params={"q": "rainy"}, headers=_headers(user))
    page = r.json()
    assert page["total"] == 1
    assert page["items"][0]["prompt"] == "Rainy day jazz"
    r = await client.get("/v1/generations", params={"q": "techno", "status": "failed"}, headers=_headers(user))
    assert r.json()["total"] == 0
    r = await client.get("/v1/generations", params={"q": "x" * 201}, headers=_headers(user))
    assert r.status_code == 422

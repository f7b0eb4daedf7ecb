"""
HTTP tests through FastAPI's TestClient against a temporary SQLite database.
"""

import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from shortlink.core.context import AppContext
from shortlink.core.rate_limit import limiter
from shortlink.main import create_app

ALICE = {"X-Subject-Id": "alice"}
BOB = {"X-Subject-Id": "bob"}


@pytest.fixture
def context(test_settings, clock):
    return AppContext.build(test_settings, clock=clock)


@pytest.fixture
def client(test_settings, context):
    app = create_app(test_settings, context=context)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def proxied_client(test_settings, clock):
    settings = test_settings.model_copy(update={"TRUST_FORWARDED_FOR": True})
    app = create_app(settings, context=AppContext.build(settings, clock=clock))
    with TestClient(app) as test_client:
        yield test_client


def wait_for_events(client, written, timeout=5.0):
    """Poll /health until the pipeline has written at least ``written`` events."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        stats = client.get("/health").json()["pipeline"]
        if stats["written"] >= written and stats["pending"] == 0:
            return stats
        time.sleep(0.02)
    raise AssertionError(f"pipeline did not write {written} events in time")


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "sqlite"
    assert body["pipeline"]["dropped_full"] == 0


def test_promo_scenario(client, clock):
    created = client.post(
        "/shorten",
        json={"url": "https://example.com/promo", "custom_code": "promo1"},
        headers=ALICE,
    )
    assert created.status_code == 201
    assert created.json()["short_url"] == "http://sho.rt/promo1"
    assert created.json()["status"] == "active"

    redirect = client.get("/promo1", follow_redirects=False)
    assert redirect.status_code == 302
    assert redirect.headers["location"] == "https://example.com/promo"
    wait_for_events(client, 1)

    clock.advance(seconds=1)
    stats = client.get("/stats/promo1", headers=ALICE).json()
    assert stats["served"] == 1
    assert stats["blocked"] == 0

    assert client.post("/links/promo1/deactivate", headers=ALICE).json()["status"] == "inactive"
    gone = client.get("/promo1", follow_redirects=False)
    assert gone.status_code == 410
    assert gone.json()["error"] == "gone"

    assert client.post("/links/promo1/reactivate", headers=ALICE).json()["status"] == "active"
    assert client.get("/promo1", follow_redirects=False).status_code == 302


def test_custom_code_collision_keeps_target(client):
    client.post("/shorten", json={"url": "https://example.com/promo", "custom_code": "promo1"})

    duplicate = client.post("/shorten", json={"url": "https://evil.example.com/", "custom_code": "promo1"})

    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "code_collision"
    assert client.get("/promo1", follow_redirects=False).headers["location"] == "https://example.com/promo"


def test_auto_generated_code(client):
    response = client.post("/shorten", json={"url": "https://example.com/long/path"})

    assert response.status_code == 201
    code = response.json()["short_code"]
    assert len(code) == 7
    assert client.get(f"/{code}", follow_redirects=False).headers["location"] == "https://example.com/long/path"


@pytest.mark.parametrize("body, kind", [
    ({"url": "javascript:alert(1)"}, "invalid_target"),
    ({"url": "ftp://example.com/file"}, "invalid_target"),
    ({"url": "https://example.com/", "custom_code": "no spaces"}, "invalid_code"),
    ({"url": "https://example.com/", "custom_code": "ab"}, "invalid_code"),
])
def test_invalid_input(client, body, kind):
    response = client.post("/shorten", json=body)
    assert response.status_code == 400
    assert response.json()["error"] == kind


def test_unknown_code(client):
    response = client.get("/doesnotexist", follow_redirects=False)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_expired_link_is_gone_and_cannot_be_reactivated(client, clock):
    expires_at = (clock.now.replace(microsecond=0)).isoformat()
    client.post("/shorten", json={"url": "https://example.com/", "custom_code": "flash1"}, headers=ALICE)
    client.put("/links/flash1/expiration", json={"expires_at": expires_at}, headers=ALICE)
    clock.advance(seconds=1)

    assert client.get("/flash1", follow_redirects=False).status_code == 410
    response = client.post("/links/flash1/reactivate", headers=ALICE)
    assert response.status_code == 409
    assert response.json()["error"] == "expired"
    assert client.get("/links/flash1", headers=ALICE).json()["expires_at"].startswith(expires_at)


def test_management_is_owner_scoped(client):
    client.post("/shorten", json={"url": "https://example.com/", "custom_code": "alice1"}, headers=ALICE)

    assert client.post("/links/alice1/deactivate", headers=BOB).status_code == 404
    assert client.post("/links/alice1/deactivate").status_code == 403
    assert client.delete("/links/alice1", headers=BOB).status_code == 404
    assert client.get("/stats/alice1", headers=BOB).status_code == 403


def test_delete_retires_code(client):
    client.post("/shorten", json={"url": "https://example.com/", "custom_code": "temp01"}, headers=ALICE)
    client.get("/temp01", follow_redirects=False)

    assert client.delete("/links/temp01", headers=ALICE).status_code == 204
    assert client.get("/temp01", follow_redirects=False).status_code == 404

    again = client.post("/shorten", json={"url": "https://example.com/", "custom_code": "temp01"}, headers=ALICE)
    assert again.status_code == 409


def test_bulk_update(client):
    for code in ("bulk01", "bulk02"):
        client.post("/shorten", json={"url": "https://example.com/", "custom_code": code}, headers=ALICE)

    response = client.post(
        "/links/bulk",
        json={"codes": ["bulk02", "missing", "bulk01", "!!"], "operation": "deactivate"},
        headers=ALICE,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total_processed"] == 4
    assert body["successful"] == 2
    assert [r["short_code"] for r in body["results"]] == ["bulk02", "missing", "bulk01", "!!"]
    assert [r["error"] for r in body["results"]] == [None, "not_found", None, "invalid_code"]


def test_owner_stats(client, clock):
    for code in ("own001", "own002"):
        client.post("/shorten", json={"url": "https://example.com/", "custom_code": code}, headers=ALICE)
        client.get(f"/{code}", follow_redirects=False)
    wait_for_events(client, 2)
    clock.advance(seconds=1)

    stats = client.get("/stats", params={"period": "week"}, headers=ALICE).json()
    assert stats["links"] == 2
    assert stats["served"] == 2
    assert stats["unique_visitors"] == 1

    assert client.get("/stats").status_code == 403


CUSTOM_CODE_CEILING = 10


def test_custom_code_creation_is_rate_limited(client):
    for i in range(CUSTOM_CODE_CEILING):
        response = client.post("/shorten", json={"url": "https://example.com/", "custom_code": f"rl{i:04d}"})
        assert response.status_code == 201

    denied = client.post("/shorten", json={"url": "https://example.com/", "custom_code": "rl9999"})

    assert denied.status_code == 429
    assert denied.json()["error"] == "rate_limited"
    assert int(denied.headers["Retry-After"]) == 3600


def test_forwarded_for_is_ignored_by_default(client):
    statuses = [
        client.post(
            "/shorten",
            json={"url": "https://example.com/", "custom_code": f"xff{i:03d}"},
            headers={"X-Forwarded-For": f"10.9.9.{i}"},
        ).status_code
        for i in range(CUSTOM_CODE_CEILING + 5)
    ]

    assert statuses == [201] * CUSTOM_CODE_CEILING + [429] * 5


def test_trusted_proxy_address_keys_the_limit(proxied_client):
    def create(code, forwarded_for):
        return proxied_client.post(
            "/shorten",
            json={"url": "https://example.com/", "custom_code": code},
            headers={"X-Forwarded-For": forwarded_for},
        ).status_code

    # Forged entries left of the proxy-appended address change nothing
    for i in range(CUSTOM_CODE_CEILING):
        assert create(f"px{i:04d}", f"10.9.9.{i}, 198.51.100.1") == 201
    assert create("px9999", "10.9.9.99, 198.51.100.1") == 429

    assert create("px9999", "198.51.100.2") == 201


def test_recovery_cooldown(client):
    first = client.post("/recovery", json={"subject": "alice@example.com"})
    second = client.post("/recovery", json={"subject": "alice@example.com"},
                         headers={"X-Forwarded-For": "192.0.2.50"})

    assert first.status_code == 202
    assert second.status_code == 429
    assert int(second.headers["Retry-After"]) == 300


@pytest.mark.parametrize("code", ["health", "stats", "docs", "redoc", "links"])
def test_route_names_cannot_be_claimed(client, code):
    response = client.post("/shorten", json={"url": "https://example.com/", "custom_code": code})

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_code"


def test_ipv6_and_scheme_like_paths_are_valid_targets(client):
    for url in ("https://[2001:db8::1]/", "https://en.wikipedia.org/wiki/File:Foo.png"):
        response = client.post("/shorten", json={"url": url})
        assert response.status_code == 201
        code = response.json()["short_code"]
        assert client.get(f"/{code}", follow_redirects=False).headers["location"] == url


def test_bulk_shorten(client):
    client.post("/shorten", json={"url": "https://example.com/", "custom_code": "taken1"})

    response = client.post(
        "/shorten/bulk",
        json={"items": [
            {"url": "https://example.com/a", "custom_code": "bulka1"},
            {"url": "https://example.com/b"},
            {"url": "javascript:alert(1)"},
            {"url": "https://example.com/c", "custom_code": "taken1"},
        ]},
        headers=ALICE,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total_processed"] == 4
    assert body["successful"] == 2
    results = body["results"]
    assert results[0]["short_code"] == "bulka1"
    assert results[0]["link"]["short_url"] == "http://sho.rt/bulka1"
    assert len(results[1]["short_code"]) == 7
    assert results[2]["short_code"] is None
    assert results[2]["error"] == "invalid_target"
    assert results[3]["error"] == "code_collision"
    assert results[3]["link"] is None
    assert client.get("/bulka1", follow_redirects=False).headers["location"] == "https://example.com/a"


def test_list_links_and_expiring_soon(client, clock):
    soon = (clock.now + timedelta(days=2)).isoformat()
    later = (clock.now + timedelta(days=30)).isoformat()
    client.post("/shorten", json={"url": "https://example.com/", "custom_code": "list01", "expires_at": soon},
                headers=ALICE)
    clock.advance(minutes=1)
    client.post("/shorten", json={"url": "https://example.com/", "custom_code": "list02", "expires_at": later},
                headers=ALICE)
    client.post("/shorten", json={"url": "https://example.com/", "custom_code": "list03"}, headers=BOB)

    listing = client.get("/links", headers=ALICE).json()
    assert listing["total_count"] == 2
    assert [link["short_code"] for link in listing["links"]] == ["list02", "list01"]

    expiring = client.get("/links", params={"expiring_within_days": 7}, headers=ALICE).json()
    assert [link["short_code"] for link in expiring["links"]] == ["list01"]
    assert expiring["expiring_within_days"] == 7

    assert client.get("/links").status_code == 403


def test_edge_limit_setting_is_per_app(test_settings, clock):
    limiter.reset()
    limited = test_settings.model_copy(update={"EDGE_RATE_LIMITS_ENABLED": True})
    limited_app = create_app(limited, context=AppContext.build(limited, clock=clock))
    open_app = create_app(test_settings, context=AppContext.build(test_settings, clock=clock))

    try:
        with TestClient(open_app) as open_client:
            assert all(open_client.get("/stats/nosuch1").status_code == 404 for _ in range(35))
        with TestClient(limited_app) as limited_client:
            statuses = [limited_client.get("/stats/nosuch2").status_code for _ in range(31)]
        assert statuses[:30] == [404] * 30
        assert statuses[30] == 429
    finally:
        limiter.reset()

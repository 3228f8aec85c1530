from datetime import datetime, timedelta, timezone

import httpx
import pytest

from conftest import ADMIN_HEADERS, USER_HEADERS, stub_youtube_link
from starlingpost.infrastructure.accounts_repo import LinkedAccountRepository
from starlingpost.infrastructure.posts_repo import PostRepository
from starlingpost.models.linked_account import LinkedAccount
from starlingpost.models.post import Post
from starlingpost.platforms.errors import RateLimitedError
from starlingpost.routers.platforms_router import http_error
from starlingpost.services.admin_metrics import UsageMetrics


async def link_youtube(api, provider):
    stub_youtube_link(provider)
    resp = await api.get("/platforms/youtube/connect", headers=USER_HEADERS)
    state = httpx.URL(resp.json()["auth_url"]).params["state"]
    return await api.get("/platforms/youtube/callback", params={"code": "auth-code", "state": state})


@pytest.mark.asyncio
async def test_health(api):
    resp = await api.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_request_id_is_echoed(api):
    resp = await api.get("/health", headers={"X-Request-ID": "req-123"})
    assert resp.headers["x-request-id"] == "req-123"


@pytest.mark.asyncio
async def test_routes_require_bearer_token(api):
    assert (await api.get("/platforms")).status_code == 401
    assert (await api.get("/platforms", headers={"Authorization": "Bearer nope"})).status_code == 401


@pytest.mark.asyncio
async def test_connect_returns_auth_url(api, fake_redis):
    resp = await api.get("/platforms/youtube/connect", headers=USER_HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert body["platform"] == "youtube"
    url = httpx.URL(body["auth_url"])
    assert url.params["client_id"] == "yt-client"
    assert f"oauth_state:{url.params['state']}" in fake_redis.store


@pytest.mark.asyncio
async def test_connect_unfinished_platform_is_501(api):
    resp = await api.get("/platforms/facebook/connect", headers=USER_HEADERS)
    assert resp.status_code == 501
    assert resp.json()["detail"] == {"error": "not_implemented", "platform": "facebook"}


@pytest.mark.asyncio
async def test_connect_unknown_platform_is_404(api):
    resp = await api.get("/platforms/myspace/connect", headers=USER_HEADERS)
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"] == "unknown_platform"


@pytest.mark.asyncio
async def test_connect_missing_config_is_500(api, monkeypatch):
    monkeypatch.delenv("YOUTUBE_CLIENT_ID")
    resp = await api.get("/platforms/youtube/connect", headers=USER_HEADERS)
    assert resp.status_code == 500
    assert resp.json()["detail"]["error"] == "configuration_error"


@pytest.mark.asyncio
async def test_callback_links_account_and_redirects(api, provider):
    resp = await link_youtube(api, provider)

    assert resp.status_code == 303
    location = httpx.URL(resp.headers["location"])
    assert location.path == "/dashboard"
    assert location.params["success"] == "youtube_connected"

    accounts = (await api.get("/platforms", headers=USER_HEADERS)).json()
    assert len(accounts) == 1
    assert accounts[0]["account_id"] == "UC123"
    assert accounts[0]["account_name"] == "Starling Channel"
    assert "access_token_enc" not in accounts[0]
    assert "refresh_token_enc" not in accounts[0]


@pytest.mark.asyncio
async def test_callback_dashboard_url_from_env(api, provider, monkeypatch):
    monkeypatch.setenv("DASHBOARD_URL", "https://app.example.com/home")
    resp = await link_youtube(api, provider)
    assert resp.headers["location"].startswith("https://app.example.com/home?")


@pytest.mark.asyncio
async def test_callback_provider_error_burns_state(api, fake_redis):
    resp = await api.get("/platforms/youtube/connect", headers=USER_HEADERS)
    state = httpx.URL(resp.json()["auth_url"]).params["state"]

    resp = await api.get("/platforms/youtube/callback",
                         params={"error": "access_denied", "error_description": "User denied", "state": state})

    location = httpx.URL(resp.headers["location"])
    assert location.params["error"] == "oauth_denied"
    assert location.params["platform"] == "youtube"
    assert "User denied" not in resp.headers["location"]
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_callback_missing_params(api):
    resp = await api.get("/platforms/youtube/callback", params={"code": "abc"})
    assert httpx.URL(resp.headers["location"]).params["error"] == "missing_params"


@pytest.mark.asyncio
async def test_callback_unknown_state(api, provider):
    resp = await api.get("/platforms/youtube/callback", params={"code": "abc", "state": "forged"})

    assert resp.status_code == 303
    assert httpx.URL(resp.headers["location"]).params["error"] == "state_not_found"
    assert provider.requests == []
    assert (await api.get("/platforms", headers=USER_HEADERS)).json() == []


@pytest.mark.asyncio
async def test_callback_facebook_is_not_implemented(api):
    resp = await api.get("/platforms/facebook/callback", params={"code": "abc", "state": "s"})
    location = httpx.URL(resp.headers["location"])
    assert location.params["error"] == "not_implemented"
    assert location.params["platform"] == "facebook"


@pytest.mark.asyncio
async def test_callback_exchange_failure_hides_provider_payload(api, provider):
    provider.add("POST", "https://oauth2.googleapis.com/token", status=400,
                 json={"error": "invalid_grant", "error_description": "Code was already redeemed."})
    resp = await api.get("/platforms/youtube/connect", headers=USER_HEADERS)
    state = httpx.URL(resp.json()["auth_url"]).params["state"]

    resp = await api.get("/platforms/youtube/callback", params={"code": "old", "state": state})

    assert httpx.URL(resp.headers["location"]).params["error"] == "exchange_failed"
    assert "redeemed" not in resp.headers["location"]


@pytest.mark.asyncio
async def test_disconnect(api, provider):
    await link_youtube(api, provider)

    resp = await api.delete("/platforms/youtube/UC123", headers=USER_HEADERS)
    assert resp.status_code == 200
    assert (await api.get("/platforms", headers=USER_HEADERS)).json() == []

    resp = await api.delete("/platforms/youtube/UC123", headers=USER_HEADERS)
    assert resp.status_code == 404


# --- posts ---

@pytest.mark.asyncio
async def test_register_post_requires_linked_account(api):
    resp = await api.post("/posts", headers=USER_HEADERS,
                          json={"platform": "youtube", "account_id": "UC123", "platform_post_id": "vid1"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_register_and_sync_post(api, provider):
    await link_youtube(api, provider)
    provider.add("GET", "https://www.googleapis.com/youtube/v3/videos", json={
        "items": [{"id": "vid1", "statistics": {"viewCount": "321", "likeCount": "12", "commentCount": "4"}}],
    })

    resp = await api.post("/posts", headers=USER_HEADERS, json={
        "platform": "youtube", "account_id": "UC123", "platform_post_id": "vid1", "title": "Launch",
    })
    assert resp.status_code == 201
    post_id = resp.json()["id"]
    assert resp.json()["metrics"] == {}

    resp = await api.post(f"/posts/{post_id}/sync", headers=USER_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["metrics"] == {"views": 321, "likes": 12, "comments": 4}
    assert resp.json()["last_synced_at"] is not None


@pytest.mark.asyncio
async def test_sync_post_rate_limited_sets_retry_after(api, provider):
    await link_youtube(api, provider)
    provider.add("GET", "https://www.googleapis.com/youtube/v3/videos", status=429,
                 headers={"Retry-After": "30"}, json={})
    resp = await api.post("/posts", headers=USER_HEADERS,
                          json={"platform": "youtube", "account_id": "UC123", "platform_post_id": "vid1"})

    resp = await api.post(f"/posts/{resp.json()['id']}/sync", headers=USER_HEADERS)

    assert resp.status_code == 429
    assert resp.headers["retry-after"] == "30"
    assert resp.json()["detail"]["error"] == "rate_limited"


def test_retry_after_header_rounds_up_fractional_seconds():
    exc = http_error(RateLimitedError("slow down", "twitter", retry_after=0.4))

    assert exc.status_code == 429
    assert exc.headers == {"Retry-After": "1"}
    assert exc.detail == {"error": "rate_limited", "platform": "twitter"}


@pytest.mark.asyncio
async def test_sync_post_of_other_user_is_404(api, provider):
    await link_youtube(api, provider)
    resp = await api.post("/posts", headers=USER_HEADERS,
                          json={"platform": "youtube", "account_id": "UC123", "platform_post_id": "vid1"})

    resp = await api.post(f"/posts/{resp.json()['id']}/sync", headers=ADMIN_HEADERS)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_batch_sync(api, provider):
    await link_youtube(api, provider)
    provider.add("GET", "https://www.googleapis.com/youtube/v3/videos", json={
        "items": [{"id": "v", "statistics": {"viewCount": "1"}}],
    })
    for vid in ("v1", "v2"):
        await api.post("/posts", headers=USER_HEADERS,
                       json={"platform": "youtube", "account_id": "UC123", "platform_post_id": vid})

    resp = await api.post("/posts/sync", headers=USER_HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert len(body["updated"]) == 2
    assert body["rate_limited"] == [] and body["failed"] == [] and body["stale"] == []


# --- users and admin ---

@pytest.mark.asyncio
async def test_users_me(api):
    resp = await api.get("/users/me", headers=USER_HEADERS)
    assert resp.json() == {"user_id": "user-1", "email": "user@example.com", "is_admin": False}


@pytest.mark.asyncio
async def test_admin_setup_unconfigured_is_500(api, monkeypatch):
    monkeypatch.delenv("ADMIN_SETUP_SECRET", raising=False)
    resp = await api.post("/admin/setup", json={"uid": "user-1", "isAdmin": True},
                          headers={"x-admin-setup-secret": "anything"})
    assert resp.status_code == 500
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_admin_setup_wrong_secret_is_401(api, identity, monkeypatch):
    monkeypatch.setenv("ADMIN_SETUP_SECRET", "s3cret")
    resp = await api.post("/admin/setup", json={"uid": "user-1", "isAdmin": True},
                          headers={"x-admin-setup-secret": "guess"})
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Unauthorized"}
    assert identity.claims == {}


@pytest.mark.asyncio
async def test_admin_setup_missing_uid_is_400(api, monkeypatch):
    monkeypatch.setenv("ADMIN_SETUP_SECRET", "s3cret")
    resp = await api.post("/admin/setup", json={"isAdmin": True}, headers={"x-admin-setup-secret": "s3cret"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Missing uid"


@pytest.mark.asyncio
async def test_admin_setup_sets_claim(api, identity, monkeypatch):
    monkeypatch.setenv("ADMIN_SETUP_SECRET", "s3cret")
    resp = await api.post("/admin/setup", json={"uid": "user-1", "isAdmin": True},
                          headers={"x-admin-setup-secret": "s3cret"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert identity.claims == {"user-1": {"isAdmin": True}}


@pytest.mark.asyncio
async def test_admin_setup_unknown_user_is_404(api, monkeypatch):
    monkeypatch.setenv("ADMIN_SETUP_SECRET", "s3cret")
    resp = await api.post("/admin/setup", json={"uid": "missing-user", "isAdmin": True},
                          headers={"x-admin-setup-secret": "s3cret"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_admin_account_listing_requires_admin_claim(api, provider):
    await link_youtube(api, provider)

    assert (await api.get("/admin/users/user-1/accounts", headers=USER_HEADERS)).status_code == 403
    resp = await api.get("/admin/users/user-1/accounts", headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    assert [a["account_id"] for a in resp.json()] == ["UC123"]


async def seed_usage(session_maker):
    now = datetime.now(timezone.utc)
    async with session_maker() as s:
        s.add(LinkedAccount(user_id="user-1", platform="youtube", account_id="UC1", access_token_enc="x",
                            created_at=now - timedelta(days=40)))
        s.add(LinkedAccount(user_id="user-2", platform="twitter", account_id="tw2", access_token_enc="x",
                            created_at=now - timedelta(days=2)))
        s.add(Post(user_id="user-1", platform="youtube", account_id="UC1", platform_post_id="old",
                   created_at=now - timedelta(days=10)))
        s.add(Post(user_id="user-1", platform="youtube", account_id="UC1", platform_post_id="new",
                   created_at=now - timedelta(hours=3)))
        s.add(Post(user_id="user-2", platform="twitter", account_id="tw2", platform_post_id="t1",
                   created_at=now - timedelta(days=3)))
        await s.commit()


@pytest.mark.asyncio
async def test_admin_metrics_requires_admin_claim(api):
    assert (await api.get("/admin/metrics")).status_code == 401
    assert (await api.get("/admin/metrics", headers=USER_HEADERS)).status_code == 403


@pytest.mark.asyncio
async def test_admin_metrics_counts_users_and_posts(api, session_maker):
    await seed_usage(session_maker)

    resp = await api.get("/admin/metrics", headers=ADMIN_HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert body["timeframe"] == "7d"
    assert body["totals"] == {"total_users": 2, "new_users": 1, "total_posts": 3, "posts_in_timeframe": 2}
    assert body["per_user"] == {
        "user-1": {"total_posts": 2, "posts_in_timeframe": 1},
        "user-2": {"total_posts": 1, "posts_in_timeframe": 1},
    }


@pytest.mark.asyncio
async def test_admin_metrics_timeframes(api, session_maker):
    await seed_usage(session_maker)

    day = (await api.get("/admin/metrics", params={"timeframe": "24h"}, headers=ADMIN_HEADERS)).json()
    everything = (await api.get("/admin/metrics", params={"timeframe": "all"}, headers=ADMIN_HEADERS)).json()

    assert day["totals"] == {"total_users": 2, "new_users": 0, "total_posts": 3, "posts_in_timeframe": 1}
    assert everything["since"] is None
    assert everything["totals"] == {"total_users": 2, "new_users": 2, "total_posts": 3, "posts_in_timeframe": 3}


@pytest.mark.asyncio
async def test_admin_metrics_rejects_unknown_timeframe(api):
    resp = await api.get("/admin/metrics", params={"timeframe": "1y"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_usage_report_counts_post_authors_without_links(session):
    now = datetime.now(timezone.utc)
    session.add(Post(user_id="ghost", platform="youtube", account_id="UC9", platform_post_id="p",
                     created_at=now - timedelta(days=20)))
    await session.commit()

    report = await UsageMetrics(LinkedAccountRepository(session), PostRepository(session)).report("30d", now=now)

    assert report.since == now - timedelta(days=30)
    assert report.totals.total_users == 1
    assert report.totals.new_users == 0
    assert report.per_user["ghost"].posts_in_timeframe == 1

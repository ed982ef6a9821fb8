"""Tests for the middleware and admin routes on a FastAPI app."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from bot_blocker import BotBlocker, BotBlockerConfig, hash_passkey, setup_bot_blocker
from bot_blocker.middleware import FORBIDDEN_HTML
from bot_blocker.routes import AUTH_COOKIE_NAME

from conftest import run_async

PASSKEY = "correct-horse-battery-staple"
ADMIN = "/admin/bot-blocker"
CHROME_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"


def _make_app(fake_d1, **options) -> tuple[FastAPI, BotBlocker]:
    config = BotBlockerConfig(
        d1_database_id="test-db",
        cf_account_id="test-account",
        cf_api_token="test-token",
        **options,
    )
    blocker = BotBlocker(config, transport=fake_d1.transport)
    app = FastAPI()

    @app.get("/")
    async def home():
        return {"ok": True}

    @app.get("/api/data")
    async def data():
        return {"data": []}

    blocker.install(app)
    app.include_router(blocker.admin_router, prefix=ADMIN)
    return app, blocker


@pytest.fixture
def open_app(fake_d1):
    app, blocker = _make_app(fake_d1)
    run_async(blocker.settings_store.save({"block_enabled": "1", "allowed_bots": ["googlebot"]}))
    return TestClient(app), blocker


@pytest.fixture
def protected_app(fake_d1):
    app, blocker = _make_app(fake_d1, passkey=hash_passkey(PASSKEY))
    run_async(blocker.settings_store.save({"block_enabled": "1"}))
    return TestClient(app), blocker


class TestBlocking:

    def test_bot_gets_forbidden_page(self, open_app):
        client, blocker = open_app
        response = client.get("/", headers={"User-Agent": "curl/8.4.0"})

        assert response.status_code == 403
        assert response.headers["content-type"] == "text/html; charset=utf-8"
        assert response.text == FORBIDDEN_HTML

        stats = run_async(blocker.event_store.stats())
        assert stats.total_blocks == 1
        assert stats.top_ips[0].ip_address == "testclient"

    def test_browser_passes(self, open_app):
        client, _ = open_app
        response = client.get("/", headers={"User-Agent": CHROME_UA})
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_allow_listed_crawler_passes(self, open_app):
        client, _ = open_app
        ua = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"
        assert client.get("/", headers={"User-Agent": ua}).status_code == 200

    def test_api_paths_bypassed(self, open_app):
        client, _ = open_app
        assert client.get("/api/data", headers={"User-Agent": "curl/8.4.0"}).status_code == 200

    def test_query_string_is_logged(self, open_app):
        client, blocker = open_app
        client.get("/?page=2", headers={"User-Agent": "wget/1.21"})
        event = run_async(blocker.event_store.recent(1))[0]
        assert event.url == "/?page=2"

    def test_disabled_blocking(self, open_app):
        client, blocker = open_app
        run_async(blocker.settings_store.save({"block_enabled": "0"}))
        assert client.get("/", headers={"User-Agent": "curl/8.4.0"}).status_code == 200

    def test_store_outage_fails_open(self, open_app, fake_d1):
        client, blocker = open_app
        blocker.settings_store.invalidate()
        fake_d1.offline = True
        assert client.get("/", headers={"User-Agent": "curl/8.4.0"}).status_code == 200

    def test_forwarded_for_ignored_by_default(self, open_app):
        client, _ = open_app
        response = client.get("/", headers={"User-Agent": "curl/8.4.0", "X-Forwarded-For": "127.0.0.1"})
        assert response.status_code == 403

    def test_forwarded_for_when_trusted(self, fake_d1):
        app, blocker = _make_app(fake_d1, trust_forwarded_for=True)
        run_async(blocker.settings_store.save({"block_enabled": "1"}))
        client = TestClient(app)

        headers = {"User-Agent": "curl/8.4.0", "X-Forwarded-For": "127.0.0.1, 10.0.0.1"}
        assert client.get("/", headers=headers).status_code == 200
        headers["X-Forwarded-For"] = "203.0.113.7"
        assert client.get("/", headers=headers).status_code == 403


class TestAdminAuth:

    def test_requires_login(self, protected_app):
        client, _ = protected_app
        assert client.get(f"{ADMIN}/settings").status_code == 401
        assert client.get(f"{ADMIN}/stats").status_code == 401
        assert client.post(f"{ADMIN}/logs/clear").status_code == 401

    def test_wrong_passkey(self, protected_app):
        client, _ = protected_app
        response = client.post(f"{ADMIN}/login", data={"passkey": "wrong-passkey-value"})
        assert response.status_code == 401

    def test_login_then_access(self, protected_app):
        client, _ = protected_app
        response = client.post(f"{ADMIN}/login", data={"passkey": PASSKEY})
        assert response.status_code == 200
        assert AUTH_COOKIE_NAME in response.cookies

        assert client.get(f"{ADMIN}/settings").status_code == 200

    def test_operator_is_never_blocked(self, protected_app):
        client, _ = protected_app
        assert client.get("/", headers={"User-Agent": "curl/8.4.0"}).status_code == 403

        client.post(f"{ADMIN}/login", data={"passkey": PASSKEY})
        assert client.get("/", headers={"User-Agent": "curl/8.4.0"}).status_code == 200

    def test_logout_clears_cookie(self, protected_app):
        client, _ = protected_app
        client.post(f"{ADMIN}/login", data={"passkey": PASSKEY})
        client.get(f"{ADMIN}/logout")
        assert client.get(f"{ADMIN}/settings").status_code == 401

    def test_no_operators_without_passkey(self, open_app):
        client, _ = open_app
        client.cookies.set(AUTH_COOKIE_NAME, "anything")
        assert client.get("/", headers={"User-Agent": "curl/8.4.0"}).status_code == 403


class TestAdminSurface:

    def test_settings_round_trip(self, open_app):
        client, _ = open_app
        response = client.post(
            f"{ADMIN}/settings",
            json={"block_enabled": "1", "allowed_bots": ["googlebot", "bingbot"]},
        )
        assert response.status_code == 200

        settings = client.get(f"{ADMIN}/settings").json()
        assert settings == {"block_enabled": "1", "allowed_bots": ["googlebot", "bingbot"]}

    def test_settings_normalized(self, open_app):
        client, _ = open_app
        response = client.post(
            f"{ADMIN}/settings",
            json={"block_enabled": True, "allowed_bots": "googlebot\n bingbot \n"},
        )
        assert response.json() == {"block_enabled": "1", "allowed_bots": ["googlebot", "bingbot"]}

        response = client.post(f"{ADMIN}/settings", json={"block_enabled": "yes"})
        assert response.json()["block_enabled"] == "0"

    def test_settings_requires_known_keys(self, open_app):
        client, _ = open_app
        assert client.post(f"{ADMIN}/settings", json={"other": 1}).status_code == 400

    def test_saved_settings_apply_immediately(self, open_app):
        client, _ = open_app
        ua = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"
        assert client.get("/", headers={"User-Agent": ua}).status_code == 200

        client.post(f"{ADMIN}/settings", json={"allowed_bots": []})
        assert client.get("/", headers={"User-Agent": ua}).status_code == 403

    def test_stats_and_clear(self, open_app):
        client, _ = open_app
        client.get("/", headers={"User-Agent": "TestBot/1.0"})

        stats = client.get(f"{ADMIN}/stats").json()
        assert stats["total_blocks"] == 1
        assert stats["today_blocks"] == 1
        assert stats["top_ips"] == [{"ip_address": "testclient", "count": 1}]

        logs = client.get(f"{ADMIN}/logs").json()
        assert logs[0]["user_agent"] == "TestBot/1.0"

        assert client.post(f"{ADMIN}/logs/clear").json() == {"success": True}
        assert client.get(f"{ADMIN}/stats").json()["total_blocks"] == 0

    def test_stats_date_range_validation(self, open_app):
        client, _ = open_app
        response = client.get(f"{ADMIN}/stats", params={"date_from": "2024-02-01", "date_to": "2024-01-01"})
        assert response.status_code == 400

    def test_clear_failure_returns_500(self, open_app, fake_d1):
        client, blocker = open_app
        run_async(blocker.event_store.ensure_table())
        fake_d1.fail_on = "DELETE FROM"
        response = client.post(f"{ADMIN}/logs/clear")
        assert response.status_code == 500
        assert response.json() == {"success": False}


class TestInstallDefaults:

    def test_seeds_settings_and_tables(self, fake_d1):
        _, blocker = _make_app(fake_d1)
        run_async(blocker.install_defaults())

        settings = run_async(blocker.settings_store.load())
        assert settings.block_enabled == "1"
        assert settings.allowed_bots == ["googlebot", "bingbot", "yandexbot", "baiduspider"]
        assert fake_d1.count("bot_blocker_logs") == 0


class TestWiring:

    def test_gate_uses_configured_dedup_guard(self):
        blocker = setup_bot_blocker("db", "acct", "token", dedup_ttl_seconds=1, dedup_max_entries=5)
        assert blocker.gate.dedup is blocker.dedup
        assert blocker.gate.dedup.ttl_sec == 1
        assert blocker.gate.dedup.max_entries == 5

    def test_clearing_dedup_allows_logging_again(self, open_app, fake_d1):
        client, blocker = open_app
        client.get("/", headers={"User-Agent": "curl/8.0"})
        client.get("/", headers={"User-Agent": "curl/8.0"})
        assert fake_d1.count("bot_blocker_logs") == 1

        blocker.dedup.clear()
        client.get("/", headers={"User-Agent": "curl/8.0"})
        assert fake_d1.count("bot_blocker_logs") == 2

"""Cookie 解析、持久化与附加规则测试"""
import json

import pytest

from bridge_agent.app.services.cookie_jar_store import CookieJarStore
from bridge_agent.app.services.cookie_resolver import (
    NOTE_HTTP_ONLY,
    REASON_DOMAIN_MISMATCH,
    REASON_EXPIRED,
    REASON_HOST_ONLY_MISMATCH,
    REASON_MANUAL_OVERRIDE,
    REASON_MANUAL_PRESENT,
    REASON_OVERRIDDEN,
    REASON_PATH_MISMATCH,
    REASON_SAMESITE_LAX,
    REASON_SAMESITE_NONE_INSECURE,
    REASON_SAMESITE_STRICT,
    REASON_SECURE_OVER_HTTP,
    CookieResolver,
    resolve_cookies_for_url,
)
from bridge_agent.models.cookie import (
    CookieParseError,
    CookieRecord,
    default_cookie_path,
    domain_matches,
    path_matches,
)

NOW = 1_700_000_000_000


def cookie(name="sid", value="abc", domain="app.example.com", **kwargs):
    return CookieRecord(name=name, value=value, domain=domain, **kwargs)


class TestCookieMatching:
    def test_domain_matches(self):
        assert domain_matches("example.com", "example.com")
        assert domain_matches(".example.com", "a.b.example.com")
        assert not domain_matches("example.com", "badexample.com")
        assert not domain_matches("", "example.com")

    def test_path_matches(self):
        """路径前缀必须落在 / 边界上"""
        assert path_matches("/", "/anything")
        assert path_matches("/admin", "/admin")
        assert path_matches("/admin", "/admin/users")
        assert path_matches("/admin/", "/admin/users")
        assert not path_matches("/admin", "/administrator")
        assert not path_matches("/admin", "/")

    def test_default_path(self):
        assert default_cookie_path("/a/b/c") == "/a/b"
        assert default_cookie_path("/a") == "/"
        assert default_cookie_path("") == "/"


class TestSetCookieParsing:
    def test_host_only_defaults(self):
        c = CookieRecord.from_set_cookie("sid=abc", "https://app.example.com/api/login", now=NOW)
        assert (c.name, c.value, c.domain) == ("sid", "abc", "app.example.com")
        assert c.host_only is True
        assert c.path == "/api"
        assert c.expires_at is None

    def test_attributes(self):
        c = CookieRecord.from_set_cookie(
            "pref=dark; Domain=.example.com; Path=/; Secure; HttpOnly; SameSite=Strict",
            "https://app.example.com/",
            now=NOW,
        )
        assert c.domain == "example.com"
        assert c.host_only is False
        assert c.secure and c.http_only
        assert c.same_site == "strict"

    def test_max_age_wins_over_expires(self):
        c = CookieRecord.from_set_cookie(
            "a=1; Expires=Wed, 21 Oct 2015 07:28:00 GMT; Max-Age=60",
            "https://example.com/",
            now=NOW,
        )
        assert c.expires_at == NOW + 60_000

    def test_expires(self):
        c = CookieRecord.from_set_cookie("a=1; Expires=Wed, 21 Oct 2015 07:28:00 GMT", "https://example.com/", now=NOW)
        assert c.expires_at == 1445412480000
        assert c.is_expired(NOW)

    def test_unknown_same_site_dropped(self):
        c = CookieRecord.from_set_cookie("a=1; SameSite=bogus", "https://example.com/", now=NOW)
        assert c.same_site == ""

    def test_foreign_domain_rejected(self):
        with pytest.raises(CookieParseError):
            CookieRecord.from_set_cookie("a=1; Domain=other.com", "https://example.com/", now=NOW)

    def test_missing_name_rejected(self):
        with pytest.raises(CookieParseError):
            CookieRecord.from_set_cookie("=value", "https://example.com/", now=NOW)

    def test_expiry_boundary(self):
        """expiresAt == now 视为已过期"""
        c = cookie(expires_at=NOW)
        assert c.is_expired(NOW)
        assert not c.is_expired(NOW - 1)


class TestCookieResolution:
    def test_secure_cookie(self):
        """Secure cookie 只在 HTTPS 下发送"""
        jar = [cookie(secure=True)]
        result = resolve_cookies_for_url(jar, "https://app.example.com/dash", now=NOW)
        assert result.header == "sid=abc"
        assert result.cookies_excluded == []

        result = resolve_cookies_for_url(jar, "http://app.example.com/dash", now=NOW)
        assert result.header == ""
        assert result.cookies_excluded[0]["reasons"] == [REASON_SECURE_OVER_HTTP]

    def test_more_specific_path_wins(self):
        jar = [cookie("pref", "root", path="/"), cookie("pref", "admin", path="/admin")]
        result = resolve_cookies_for_url(jar, "https://app.example.com/admin/users", now=NOW)
        assert result.header == "pref=admin"
        assert [c["path"] for c in result.cookies_sent] == ["/admin"]
        assert result.cookies_excluded[0]["path"] == "/"
        assert result.cookies_excluded[0]["reasons"] == [REASON_OVERRIDDEN]

    def test_header_ordered_by_path_length(self):
        jar = [cookie("a", "1", path="/"), cookie("b", "2", path="/x/y"), cookie("c", "3", path="/x")]
        result = resolve_cookies_for_url(jar, "https://app.example.com/x/y/z", now=NOW)
        assert result.header == "b=2; c=3; a=1"
        assert result.count == 3

    def test_exclusion_reasons(self):
        jar = [
            cookie("expired", expires_at=NOW),
            cookie("none_insecure", same_site="none"),
            cookie("other_host", domain="www.example.com"),
            cookie("other_domain", domain="other.com", host_only=False),
            cookie("deep_path", path="/admin"),
        ]
        result = resolve_cookies_for_url(jar, "https://app.example.com/", now=NOW)
        reasons = {c["name"]: c["reasons"] for c in result.cookies_excluded}
        assert reasons == {
            "expired": [REASON_EXPIRED],
            "none_insecure": [REASON_SAMESITE_NONE_INSECURE],
            "other_host": [REASON_HOST_ONLY_MISMATCH],
            "other_domain": [REASON_DOMAIN_MISMATCH],
            "deep_path": [REASON_PATH_MISMATCH],
        }
        assert result.cookies_sent == []

    def test_domain_cookie_for_subdomain(self):
        jar = [cookie(domain="example.com", host_only=False)]
        result = resolve_cookies_for_url(jar, "https://api.example.com/", now=NOW)
        assert result.header == "sid=abc"
        assert result.cookies_sent[0]["whyParts"][0] == "Domain match"

    def test_cross_site(self):
        """跨站时 Strict/Lax（含默认）被排除，None+Secure 可以发送"""
        jar = [
            cookie("strict", same_site="strict"),
            cookie("lax", same_site="lax"),
            cookie("default"),
            cookie("none", same_site="none", secure=True),
        ]
        result = resolve_cookies_for_url(jar, "https://app.example.com/", site_origin="https://ui.other.com", now=NOW)
        assert result.is_cross_site
        assert result.header == "none=abc"
        reasons = {c["name"]: c["reasons"] for c in result.cookies_excluded}
        assert reasons == {
            "strict": [REASON_SAMESITE_STRICT],
            "lax": [REASON_SAMESITE_LAX],
            "default": [REASON_SAMESITE_LAX],
        }

    def test_same_site_origin(self):
        jar = [cookie(same_site="strict")]
        result = resolve_cookies_for_url(jar, "https://app.example.com/", site_origin="https://app.example.com:8443", now=NOW)
        assert not result.is_cross_site
        assert result.header == "sid=abc"

    def test_manual_header_override(self):
        """手动 Cookie 头完全替代 jar"""
        jar = [cookie("sid"), cookie("gone", expires_at=NOW)]
        result = resolve_cookies_for_url(jar, "https://app.example.com/", manual_cookie_header="x=1; y=2", now=NOW)
        assert result.manual_override
        assert result.header == "x=1; y=2"
        assert result.cookies_sent == []
        assert result.count == 2
        reasons = {c["name"]: c["reasons"] for c in result.cookies_excluded}
        assert reasons["sid"] == [REASON_MANUAL_OVERRIDE, REASON_MANUAL_PRESENT]
        assert reasons["gone"] == [REASON_EXPIRED, REASON_MANUAL_PRESENT]
        assert all("whyParts" not in c for c in result.cookies_excluded)

    def test_http_only_note(self):
        result = resolve_cookies_for_url([cookie(http_only=True)], "https://app.example.com/", now=NOW)
        assert result.cookies_sent[0]["notes"] == [NOTE_HTTP_ONLY]

    def test_resolution_is_idempotent(self):
        jar = [cookie("pref", path="/"), cookie("pref", path="/admin"), cookie("x", secure=True)]
        first = resolve_cookies_for_url(jar, "http://app.example.com/admin", now=NOW).to_dict()
        second = resolve_cookies_for_url(jar, "http://app.example.com/admin", now=NOW).to_dict()
        assert first == second

    def test_invalid_url(self):
        with pytest.raises(ValueError):
            resolve_cookies_for_url([], "not a url", now=NOW)


class TestCookieJarStore:
    def test_apply_and_list(self, tmp_path):
        store = CookieJarStore(str(tmp_path))
        store.apply_set_cookie("work", "https://app.example.com/", ["sid=1; Path=/", "theme=dark"], now=NOW)
        names = sorted(c.name for c in store.list_cookies("work", now=NOW))
        assert names == ["sid", "theme"]

        payload = json.loads((tmp_path / "work.json").read_text(encoding="utf-8"))
        assert payload["version"] == 1
        assert payload["jarId"] == "work"
        assert len(payload["cookies"]) == 2

    def test_upsert_same_key(self, tmp_path):
        store = CookieJarStore(str(tmp_path))
        store.apply_set_cookie("j", "https://example.com/", ["sid=1; Path=/"], now=NOW)
        store.apply_set_cookie("j", "https://example.com/", ["sid=2; Path=/"], now=NOW)
        cookies = store.list_cookies("j", now=NOW)
        assert [(c.name, c.value) for c in cookies] == [("sid", "2")]

    def test_expired_directive_deletes(self, tmp_path):
        store = CookieJarStore(str(tmp_path))
        store.apply_set_cookie("j", "https://example.com/", ["sid=1; Path=/"], now=NOW)
        store.apply_set_cookie("j", "https://example.com/", ["sid=; Path=/; Max-Age=0"], now=NOW)
        assert store.list_cookies("j", now=NOW) == []

    def test_invalid_directive_skipped(self, tmp_path):
        store = CookieJarStore(str(tmp_path))
        cookies = store.apply_set_cookie("j", "https://example.com/", ["", "novalue", "ok=1"], now=NOW)
        assert [c.name for c in cookies] == ["ok"]

    def test_corrupt_jar_is_empty(self, tmp_path):
        (tmp_path / "bad.json").write_text("{not json", encoding="utf-8")
        store = CookieJarStore(str(tmp_path))
        assert store.load("bad") == []

    def test_legacy_host_map(self, tmp_path):
        """兼容按主机分组的旧结构"""
        legacy = {"jar": {"example.com": [{"name": "a", "value": "1", "domain": "example.com"}]}}
        (tmp_path / "old.json").write_text(json.dumps(legacy), encoding="utf-8")
        store = CookieJarStore(str(tmp_path))
        assert [c.name for c in store.load("old")] == ["a"]

    def test_jar_id_sanitized(self, tmp_path):
        store = CookieJarStore(str(tmp_path))
        path = store.jar_path("../../etc/passwd")
        assert path.parent == tmp_path

    def test_clear(self, tmp_path):
        store = CookieJarStore(str(tmp_path))
        store.apply_set_cookie("j", "https://example.com/", ["a=1"], now=NOW)
        assert store.clear("j") is True
        assert store.clear("j") is False
        assert store.load("j") == []

    def test_resolver_reads_jar(self, tmp_path):
        store = CookieJarStore(str(tmp_path))
        store.apply_set_cookie("j", "https://app.example.com/", ["sid=1; Secure", "plain=1"], now=NOW)
        result = CookieResolver(store).resolve("j", "https://app.example.com/dash", now=NOW)
        assert result.header == "sid=1; plain=1"

        why = {c["name"]: c["whyParts"] for c in result.cookies_sent}
        assert "Secure" in why["sid"]
        assert "Not secure" not in why["sid"]
        assert "Not secure" in why["plain"]
        assert "Secure" not in why["plain"]

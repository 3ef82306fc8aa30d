"""Tests for path matching precedence and backend path construction."""

import pytest

from pathgate.routing import (
    NoRouteMatchError,
    PathMatcher,
    load_route_table,
    matcher_for,
    normalize_path,
)


@pytest.fixture
def matcher(route_table):
    return PathMatcher(route_table)


class TestNormalizePath:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("", "/"),
            ("/", "/"),
            ("app1", "/app1"),
            ("//app1///x", "/app1/x"),
            ("/app1/x/", "/app1/x/"),
            ("/app1/./x", "/app1/x"),
            ("/app1/../admin", "/admin"),
            ("/../../etc", "/etc"),
            ("/app1/x/..", "/app1/"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_path(raw) == expected


class TestPrecedence:
    def test_wildcard_prefix(self, matcher):
        match = matcher.match("/app1/dashboard")
        assert match.rule.name == "app1"
        assert match.pattern == "/app1/*"
        assert match.mount_prefix == "/app1"
        assert match.backend_path == "/dashboard"
        assert not match.is_default

    def test_prefix_itself_matches(self, matcher):
        assert matcher.match("/app1").backend_path == "/"
        assert matcher.match("/app1/").backend_path == "/"

    def test_segment_boundary(self, matcher):
        assert matcher.match("/app10/x").rule.name == "web"
        assert matcher.match("/apix").rule.name == "web"

    def test_longest_prefix_wins(self, matcher):
        assert matcher.match("/api/v2/items").rule.name == "api-v2"
        assert matcher.match("/api/v1/items").rule.name == "api"
        assert matcher.match("/api/v2").rule.name == "api-v2"

    def test_exact_rule(self, matcher):
        match = matcher.match("/login")
        assert match.rule.name == "login"
        assert match.backend_path == "/"
        assert matcher.match("/login/").rule.name == "login"
        assert matcher.match("/login/other").rule.name == "web"

    def test_exact_beats_wildcard(self):
        table = load_route_table(
            {
                "rules": [
                    {"name": "wide", "paths": ["/app/*"], "backend": "http://wide"},
                    {"name": "narrow", "paths": ["/app/health"], "backend": "http://narrow"},
                ]
            }
        )
        matcher = PathMatcher(table)
        assert matcher.match("/app/health").rule.name == "narrow"
        assert matcher.match("/app/other").rule.name == "wide"

    def test_tie_goes_to_first_rule(self):
        table = load_route_table(
            {
                "rules": [
                    {"name": "first", "paths": ["/a/*"], "backend": "http://first"},
                    {"name": "second", "paths": ["/b/*", "/c/*"], "backend": "http://second"},
                    {"name": "third", "paths": ["/d/*"], "backend": "http://third"},
                ],
            }
        )
        matcher = PathMatcher(table)
        assert matcher.match("/a/x").rule.name == "first"
        assert matcher.match("/c/x").rule.name == "second"
        assert matcher.match("/d/x").rule.name == "third"

    def test_catch_all_rule(self):
        table = load_route_table(
            {
                "rules": [
                    {"name": "all", "paths": ["/*"], "backend": "http://all"},
                    {"name": "app", "paths": ["/app/*"], "backend": "http://app"},
                ]
            }
        )
        matcher = PathMatcher(table)
        assert matcher.match("/app/x").rule.name == "app"
        match = matcher.match("/anything")
        assert match.rule.name == "all"
        assert match.mount_prefix == ""
        assert match.backend_path == "/anything"

    def test_default_rule(self, matcher):
        match = matcher.match("/static/site.css")
        assert match.rule.name == "web"
        assert match.is_default
        assert match.mount_prefix == ""
        assert match.backend_path == "/static/site.css"
        assert match.backend_url == "https://web.azurewebsites.net/static/site.css"

    def test_no_match_without_default(self):
        table = load_route_table(
            {"rules": [{"name": "a", "paths": ["/a/*"], "backend": "http://a"}]}
        )
        with pytest.raises(NoRouteMatchError) as exc_info:
            PathMatcher(table).match("/b")
        assert exc_info.value.path == "/b"

    def test_dot_segments_cannot_escape_prefix(self, matcher):
        assert matcher.match("/app1/../api/x").rule.name == "api"


class TestCaseHandling:
    def test_case_insensitive_by_default(self, matcher):
        match = matcher.match("/APP1/Dashboard")
        assert match.rule.name == "app1"
        assert match.mount_prefix == "/APP1"
        assert match.backend_path == "/Dashboard"

    def test_case_sensitive_table(self):
        table = load_route_table(
            {
                "case_sensitive": True,
                "rules": [{"name": "a", "paths": ["/App/*"], "backend": "http://a"}],
            }
        )
        matcher = PathMatcher(table)
        assert matcher.match("/App/x").rule.name == "a"
        with pytest.raises(NoRouteMatchError):
            matcher.match("/app/x")


class TestBackendPath:
    def test_backend_base_path_is_prepended(self, matcher):
        match = matcher.match("/api/users/1")
        assert match.backend_path == "/base/users/1"
        assert match.backend_url == "http://api.internal:8080/base/users/1"

    def test_backend_url_escapes_reserved_characters(self, matcher):
        match = matcher.match("/app1/report?v1#frag 100%")
        assert match.backend_path == "/report?v1#frag 100%"
        assert (
            match.backend_url
            == "https://app1.azurewebsites.net/report%3Fv1%23frag%20100%25"
        )

    def test_case_mode_carried_on_match(self, matcher):
        assert matcher.match("/app1/x").case_sensitive is False

    def test_backend_base_path_root(self, matcher):
        assert matcher.match("/api").backend_path == "/base/"

    def test_prefix_kept_without_strip(self, matcher):
        match = matcher.match("/legacy/reports")
        assert match.rule.name == "legacy"
        assert match.mount_prefix == "/legacy"
        assert match.backend_path == "/legacy/reports"
        assert match.public_prefix == ""

    def test_public_prefix_with_strip(self, matcher):
        assert matcher.match("/app1/x").public_prefix == "/app1"


def test_matcher_for_reuses_instance(route_table):
    first = matcher_for(route_table)
    assert matcher_for(route_table) is first
    other = load_route_table({"rules": []})
    assert matcher_for(other) is not first

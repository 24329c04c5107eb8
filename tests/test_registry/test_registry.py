"""
Tests for RegistryClient.

Covers:
- NPM search parsing, empty results, exact-match narrowing
- NPM metadata: type info, deprecation, downloads fallback
- PyPI exact lookup: typed classifier, keywords, repository, 404
- Error wrapping: transport failure, timeout, HTTP 5xx
- Version checks and official-package detection
"""

from typing import Any, Callable

import httpx
import pytest

from upskill.config.schema import RegistryConfig
from upskill.errors import NetworkError, NotFoundError, OperationTimeoutError
from upskill.registry.client import RegistryClient, is_official

Handler = Callable[[httpx.Request], httpx.Response]


def make_client(routes: dict[str, Any] | Handler) -> RegistryClient:
    """RegistryClient over httpx.MockTransport.

    routes maps "host/path" to a JSON payload (or an int status code).
    Unknown routes answer 404.
    """
    if callable(routes):
        handler = routes
    else:
        def handler(request: httpx.Request) -> httpx.Response:
            key = f"{request.url.host}{request.url.path}"
            payload = routes.get(key)
            if payload is None:
                return httpx.Response(404, json={"error": "not found"})
            if isinstance(payload, int):
                return httpx.Response(payload)
            return httpx.Response(200, json=payload)

    http = httpx.Client(transport=httpx.MockTransport(handler))
    return RegistryClient(RegistryConfig(), http=http)


NPM_SEARCH = {
    "objects": [
        {
            "package": {
                "name": "widgetkit-extra",
                "version": "0.4.0",
                "description": "Extras",
                "date": "2026-01-01T00:00:00.000Z",
                "links": {},
            },
            "downloads": {"weekly": 10},
        },
        {
            "package": {
                "name": "widgetkit",
                "version": "2.1.0",
                "description": "Widgets for everyone",
                "keywords": ["widgets", "ui"],
                "date": "2026-05-01T00:00:00.000Z",
                "links": {"repository": "https://github.com/acme/widgetkit"},
            },
            "downloads": {"weekly": 52000},
        },
    ]
}

NPM_WIDGETKIT = {
    "name": "widgetkit",
    "dist-tags": {"latest": "2.1.0"},
    "versions": {
        "2.0.0": {"version": "2.0.0", "deprecated": "security issue"},
        "2.1.0": {
            "version": "2.1.0",
            "description": "Widgets for everyone",
            "types": "index.d.ts",
            "keywords": ["widgets", "ui"],
            "repository": {"type": "git", "url": "git+https://github.com/acme/widgetkit.git"},
        },
    },
    "time": {"2.1.0": "2026-05-01T00:00:00.000Z"},
    "readme": "# widgetkit\n\nMake widgets.",
}

PYPI_WIDGETKIT = {
    "info": {
        "name": "widgetkit",
        "version": "1.3.0",
        "summary": "Python widgets",
        "keywords": "widgets, gui",
        "home_page": "",
        "project_urls": {"Source": "https://github.com/widgetkit/widgetkit-py"},
        "classifiers": ["Typing :: Typed", "Programming Language :: Python :: 3"],
        "description": "Use an API key to authenticate.",
    },
    "urls": [
        {"upload_time_iso_8601": "2026-03-02T10:00:00.000000Z", "yanked": False},
    ],
    "releases": {
        "1.2.0": [{"yanked": True}],
        "1.3.0": [{"yanked": False}],
    },
}


# ── NPM ──────────────────────────────────────────────────────────────────


class TestNpmSearch:
    def test_parses_results(self):
        client = make_client({"registry.npmjs.org/-/v1/search": NPM_SEARCH})
        results = client.search_npm("widgetkit")
        assert [r.name for r in results] == ["widgetkit-extra", "widgetkit"]
        assert results[1].weekly_downloads == 52000
        assert results[1].keywords == ["widgets", "ui"]
        assert results[1].registry == "npm"
        assert results[1].last_published is not None

    def test_no_matches_is_empty_list(self):
        client = make_client({"registry.npmjs.org/-/v1/search": {"objects": [], "total": 0}})
        assert client.search_npm("nothing-here") == []

    def test_sends_query_and_size(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"objects": []})

        make_client(handler).search_npm("widgetkit")
        assert seen[0].url.params["text"] == "widgetkit"
        assert seen[0].url.params["size"] == "20"


class TestNpmMetadata:
    def test_best_match_prefers_exact_name(self):
        client = make_client({
            "registry.npmjs.org/-/v1/search": NPM_SEARCH,
            "registry.npmjs.org/widgetkit": NPM_WIDGETKIT,
        })
        best = client.best_npm_match("widgetkit")
        assert best.name == "widgetkit"
        assert best.version == "2.1.0"
        assert best.has_type_info is True
        assert best.weekly_downloads == 52000
        assert best.readme.startswith("# widgetkit")
        assert best.deprecated is False

    def test_best_match_none_when_search_empty(self):
        client = make_client({"registry.npmjs.org/-/v1/search": {"objects": []}})
        assert client.best_npm_match("widgetkit") is None

    def test_downloads_api_fallback(self):
        search = {"objects": [{"package": {"name": "widgetkit", "version": "2.1.0"}}]}
        client = make_client({
            "registry.npmjs.org/-/v1/search": search,
            "registry.npmjs.org/widgetkit": NPM_WIDGETKIT,
            "api.npmjs.org/downloads/point/last-week/widgetkit": {"downloads": 777},
        })
        assert client.best_npm_match("widgetkit").weekly_downloads == 777

    def test_fetch_missing_package(self):
        client = make_client({})
        assert client.fetch_npm("ghost") is None

    def test_untyped_package(self):
        doc = {
            "name": "plain",
            "dist-tags": {"latest": "1.0.0"},
            "versions": {"1.0.0": {"version": "1.0.0", "deprecated": "use fancy"}},
        }
        client = make_client({"registry.npmjs.org/plain": doc})
        summary = client.fetch_npm("plain")
        assert summary.has_type_info is False
        assert summary.deprecated is True


# ── PyPI ─────────────────────────────────────────────────────────────────


class TestPypi:
    def test_fetch_parses_info(self):
        client = make_client({"pypi.org/pypi/widgetkit/json": PYPI_WIDGETKIT})
        summary = client.fetch_pypi("widgetkit")
        assert summary.registry == "pypi"
        assert summary.version == "1.3.0"
        assert summary.weekly_downloads is None
        assert summary.has_type_info is True
        assert summary.keywords == ["widgets", "gui"]
        assert summary.repository == "https://github.com/widgetkit/widgetkit-py"
        assert summary.official is True  # repository owner is "widgetkit"
        assert summary.last_published.year == 2026
        assert "API key" in summary.readme

    def test_missing_is_none_not_error(self):
        client = make_client({})
        assert client.fetch_pypi("does-not-exist") is None


# ── Errors ───────────────────────────────────────────────────────────────


class TestErrors:
    def test_transport_failure_is_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError) as exc_info:
            make_client(handler).fetch_pypi("widgetkit")
        assert exc_info.value.registry == "pypi"
        assert exc_info.value.package == "widgetkit"
        assert exc_info.value.step == "metadata"

    def test_timeout_is_distinct(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(OperationTimeoutError) as exc_info:
            make_client(handler).search_npm("widgetkit")
        assert exc_info.value.registry == "npm"
        assert exc_info.value.seconds == RegistryConfig().timeout
        assert not isinstance(exc_info.value, NetworkError)

    def test_server_error_is_network_error(self):
        client = make_client({"registry.npmjs.org/-/v1/search": 503})
        with pytest.raises(NetworkError, match="503"):
            client.search_npm("widgetkit")

    def test_invalid_json_is_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>")

        with pytest.raises(NetworkError, match="invalid JSON"):
            make_client(handler).fetch_npm("widgetkit")


# ── Version checks ───────────────────────────────────────────────────────


class TestCheckVersion:
    def test_npm_deprecated_installed_version_is_critical(self):
        client = make_client({"registry.npmjs.org/widgetkit": NPM_WIDGETKIT})
        status = client.check_version("widgetkit", "npm", "2.0.0")
        assert status.latest == "2.1.0"
        assert status.critical is True

    def test_pypi_yanked_release_is_critical(self):
        client = make_client({"pypi.org/pypi/widgetkit/json": PYPI_WIDGETKIT})
        assert client.check_version("widgetkit", "pypi", "1.2.0").critical is True
        assert client.check_version("widgetkit", "pypi", "1.3.0").critical is False

    def test_unpublished_package(self):
        with pytest.raises(NotFoundError):
            make_client({}).check_version("ghost", "npm", "1.0.0")


class TestIsOfficial:
    @pytest.mark.parametrize(
        "name,query,homepage,repository,expected",
        [
            ("@stripe/stripe-js", "stripe", None, None, True),
            ("stripe", "stripe", "https://stripe.com/docs", None, True),
            ("stripe-client", "stripe", None, "https://github.com/stripe/stripe-client", True),
            ("stripe-client", "stripe", None, "https://github.com/someone/stripe-client", False),
            ("stripe-helpers", "stripe", "https://example.org", None, False),
        ],
    )
    def test_signals(self, name, query, homepage, repository, expected):
        assert is_official(name, query, homepage, repository) is expected

"""
Read-only HTTP client for the NPM and PyPI registries.

Endpoints:
- NPM search:    GET {npm_search_url}?text=<q>&size=<n>
- NPM metadata:  GET {npm_registry}/<name>
- NPM downloads: GET {npm_downloads_url}/<name>
- PyPI metadata: GET {pypi_url}/<name>/json

PyPI has no fuzzy search API, so PyPI lookups are exact-name only and a
missing name is a normal None result. Transport failures become
NetworkError, timeouts become OperationTimeoutError; neither is retried
here. The caller re-invokes.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import quote, urlparse

import httpx
import structlog

from .. import __version__
from ..config.schema import RegistryConfig
from ..errors import NetworkError, NotFoundError, OperationTimeoutError
from .models import PackageSummary, Registry

logger = structlog.get_logger()

_REPO_OWNER_RE = re.compile(r"(?:github|gitlab|bitbucket)\.(?:com|org)[/:]([^/]+)/", re.IGNORECASE)

# project_urls keys PyPI projects commonly use for their source repository
_PYPI_REPO_KEYS = ("source", "source code", "repository", "code", "github")


@dataclass
class VersionStatus:
    """Latest published version and whether the installed one is flagged."""

    latest: str
    critical: bool = False


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _normalize_query(query: str) -> str:
    """'@Stripe/stripe-js' -> 'stripe'; 'stripe' -> 'stripe'."""
    q = query.strip().lower()
    if q.startswith("@"):
        q = q[1:].split("/", 1)[0]
    return q


def _compact(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


def is_official(
    name: str,
    query: str,
    homepage: str | None = None,
    repository: str | None = None,
) -> bool:
    """Whether a package looks published by the service it is named after.

    Signals, any of which is enough:
    - NPM scope equals the query (``@stripe/stripe-js`` for ``stripe``)
    - repository owner equals the query (``github.com/stripe/...``)
    - homepage domain equals the query (``https://stripe.com/docs``)
    """
    q = _compact(_normalize_query(query))
    if not q:
        return False

    if name.startswith("@") and _compact(name[1:].split("/", 1)[0]) == q:
        return True

    if repository:
        match = _REPO_OWNER_RE.search(repository)
        if match and _compact(match.group(1)) == q:
            return True

    if homepage:
        host = urlparse(homepage).hostname or ""
        labels = host.split(".")
        if len(labels) >= 2 and _compact(labels[-2]) == q:
            return True

    return False


def _npm_repository_url(raw: Any) -> str | None:
    if isinstance(raw, dict):
        return raw.get("url")
    if isinstance(raw, str):
        return raw
    return None


class RegistryClient:
    """Queries NPM and PyPI and normalizes results into PackageSummary.

    The httpx client can be injected (tests pass one built on
    httpx.MockTransport); otherwise one is created from RegistryConfig.
    """

    def __init__(self, config: RegistryConfig, http: httpx.Client | None = None):
        self.config = config
        self.http = http or httpx.Client(
            timeout=config.timeout,
            follow_redirects=True,
            headers={
                "Accept": "application/json",
                "User-Agent": f"upskill/{__version__}",
            },
        )
        self.log = logger.bind(component="registry_client")

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "RegistryClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ── HTTP ─────────────────────────────────────────────────────────────

    def _get_json(
        self,
        url: str,
        *,
        package: str,
        registry: Registry,
        step: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """GET a JSON document. Returns None on 404."""
        self.log.debug("registry.request", url=url, params=params, step=step)
        try:
            response = self.http.get(url, params=params)
        except httpx.TimeoutException as e:
            raise OperationTimeoutError(
                f"Request to {url} timed out",
                seconds=self.config.timeout,
                package=package,
                registry=registry,
                step=step,
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(
                f"Request to {url} failed: {e}",
                package=package,
                registry=registry,
                step=step,
            ) from e

        if response.status_code == 404:
            return None
        if response.is_error:
            raise NetworkError(
                f"{url} answered HTTP {response.status_code}",
                package=package,
                registry=registry,
                step=step,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError(
                f"{url} returned invalid JSON",
                package=package,
                registry=registry,
                step=step,
            ) from e

        if not isinstance(data, dict):
            raise NetworkError(
                f"{url} returned an unexpected payload",
                package=package,
                registry=registry,
                step=step,
            )
        return data

    # ── NPM ──────────────────────────────────────────────────────────────

    def search_npm(self, query: str) -> list[PackageSummary]:
        """Fuzzy search on NPM. No matches is an empty list, not an error."""
        data = self._get_json(
            self.config.npm_search_url,
            params={"text": query, "size": self.config.search_size},
            package=query,
            registry="npm",
            step="search",
        )
        objects = (data or {}).get("objects") or []

        results: list[PackageSummary] = []
        for obj in objects:
            pkg = obj.get("package") or {}
            if not pkg.get("name") or not pkg.get("version"):
                continue
            links = pkg.get("links") or {}
            downloads = (obj.get("downloads") or {}).get("weekly")
            results.append(
                PackageSummary(
                    name=pkg["name"],
                    version=pkg["version"],
                    description=pkg.get("description") or "",
                    weekly_downloads=downloads if isinstance(downloads, int) else None,
                    registry="npm",
                    official=is_official(
                        pkg["name"], query, links.get("homepage"), links.get("repository")
                    ),
                    last_published=_parse_time(pkg.get("date")),
                    keywords=list(pkg.get("keywords") or []),
                    homepage=links.get("homepage"),
                    repository=links.get("repository"),
                )
            )

        self.log.info("registry.npm.search", query=query, results=len(results))
        return results

    def _npm_document(self, name: str, step: str) -> dict[str, Any] | None:
        url = f"{self.config.npm_registry.rstrip('/')}/{quote(name, safe='@')}"
        return self._get_json(url, package=name, registry="npm", step=step)

    def npm_weekly_downloads(self, name: str) -> int | None:
        """Last-week download count from the NPM downloads API."""
        url = f"{self.config.npm_downloads_url.rstrip('/')}/{name}"
        data = self._get_json(url, package=name, registry="npm", step="downloads")
        if not data:
            return None
        downloads = data.get("downloads")
        return downloads if isinstance(downloads, int) else None

    def fetch_npm(self, name: str, query: str | None = None) -> PackageSummary | None:
        """Full metadata for one NPM package, or None if it does not exist."""
        doc = self._npm_document(name, step="metadata")
        if not doc:
            return None

        latest = (doc.get("dist-tags") or {}).get("latest")
        versions = doc.get("versions") or {}
        if not latest or latest not in versions:
            self.log.warning("registry.npm.no_latest", package=name)
            return None

        manifest = versions[latest]
        homepage = manifest.get("homepage") or doc.get("homepage")
        repository = _npm_repository_url(manifest.get("repository") or doc.get("repository"))
        has_types = bool(
            manifest.get("types")
            or manifest.get("typings")
            or name.startswith("@types/")
        )

        return PackageSummary(
            name=doc.get("name", name),
            version=latest,
            description=manifest.get("description") or doc.get("description") or "",
            has_type_info=has_types,
            registry="npm",
            official=is_official(name, query or name, homepage, repository),
            last_published=_parse_time((doc.get("time") or {}).get(latest)),
            keywords=list(manifest.get("keywords") or doc.get("keywords") or []),
            homepage=homepage,
            repository=repository,
            deprecated=bool(manifest.get("deprecated")),
            readme=doc.get("readme") or "",
        )

    def best_npm_match(self, query: str) -> PackageSummary | None:
        """Narrow an NPM search to one candidate and enrich it with metadata.

        An exact (case-insensitive) name match wins; otherwise the first
        search result, which NPM orders by relevance.
        """
        results = self.search_npm(query)
        if not results:
            return None

        wanted = query.strip().lower()
        best = next((r for r in results if r.name.lower() == wanted), results[0])

        details = self.fetch_npm(best.name, query=query)
        if details is None:
            return best

        downloads = best.weekly_downloads
        if downloads is None:
            downloads = self.npm_weekly_downloads(best.name)
        return details.model_copy(
            update={
                "weekly_downloads": downloads,
                "official": details.official or best.official,
            }
        )

    # ── PyPI ─────────────────────────────────────────────────────────────

    def _pypi_document(self, name: str, step: str) -> dict[str, Any] | None:
        url = f"{self.config.pypi_url.rstrip('/')}/{quote(name)}/json"
        return self._get_json(url, package=name, registry="pypi", step=step)

    def fetch_pypi(self, exact_name: str, query: str | None = None) -> PackageSummary | None:
        """Exact-name PyPI lookup. None when the project does not exist."""
        doc = self._pypi_document(exact_name, step="metadata")
        if not doc:
            return None

        info = doc.get("info") or {}
        if not info.get("version"):
            return None

        project_urls = {k.lower(): v for k, v in (info.get("project_urls") or {}).items()}
        homepage = info.get("home_page") or project_urls.get("homepage")
        repository = next(
            (project_urls[k] for k in _PYPI_REPO_KEYS if project_urls.get(k)),
            None,
        )
        files = doc.get("urls") or []
        upload_times = [
            t for t in (_parse_time(f.get("upload_time_iso_8601")) for f in files) if t
        ]
        yanked = bool(info.get("yanked")) or (bool(files) and all(f.get("yanked") for f in files))
        raw_keywords = info.get("keywords") or ""
        if isinstance(raw_keywords, list):
            keywords = [k for k in raw_keywords if k]
        else:
            keywords = [k for k in re.split(r"[,\s]+", raw_keywords) if k]
        name = info.get("name") or exact_name

        summary = PackageSummary(
            name=name,
            version=info["version"],
            description=info.get("summary") or "",
            weekly_downloads=None,
            has_type_info="Typing :: Typed" in (info.get("classifiers") or []),
            registry="pypi",
            official=is_official(name, query or exact_name, homepage, repository),
            last_published=max(upload_times) if upload_times else None,
            keywords=keywords,
            homepage=homepage,
            repository=repository,
            deprecated=yanked,
            readme=info.get("description") or "",
        )
        self.log.info("registry.pypi.fetch", package=name, version=summary.version)
        return summary

    # ── Version checks ───────────────────────────────────────────────────

    def check_version(self, name: str, registry: Registry, installed: str) -> VersionStatus:
        """Latest version of a package and whether `installed` is flagged.

        An installed version is critical when NPM marks it deprecated or
        every PyPI file of that release is yanked.

        Raises:
            NotFoundError: the package no longer exists in its registry.
        """
        if registry == "npm":
            doc = self._npm_document(name, step="check")
            if doc:
                latest = (doc.get("dist-tags") or {}).get("latest")
                manifest = (doc.get("versions") or {}).get(installed) or {}
                if latest:
                    return VersionStatus(latest=latest, critical=bool(manifest.get("deprecated")))
        else:
            doc = self._pypi_document(name, step="check")
            if doc:
                latest = (doc.get("info") or {}).get("version")
                files = (doc.get("releases") or {}).get(installed) or []
                critical = bool(files) and all(f.get("yanked") for f in files)
                if latest:
                    return VersionStatus(latest=latest, critical=critical)

        raise NotFoundError(
            f"{name} is no longer published",
            package=name,
            registry=registry,
            step="check",
        )

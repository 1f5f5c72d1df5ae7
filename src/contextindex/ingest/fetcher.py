"""Source fetcher — resolves a source location to raw text documents.

Supported locations:
  /path/to/file, file:///path   → local file (.pdf via pypdf, else UTF-8 text)
  https://github.com/OWNER/REPO  → one document per Markdown file of the repository tree
  https:// / http://             → web page (HTML converted to text)

Web security requirements:
- SSRF guard: the hostname is resolved and private/loopback/link-local/
  reserved ranges are blocked before any connection is established.
- Content-Type whitelist: text/html, text/plain, text/markdown.
- Max response body and timeout from ``fetch:`` config; max 3 redirects, each
  redirect target passes the SSRF guard again.

Every failure is reported as FetchError.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import re
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.client import HTTPResponse
from pathlib import Path

import html2text
import pypdf
from bs4 import BeautifulSoup
from pypdf.errors import PyPdfError

from contextindex.clock import CancelToken
from contextindex.config import FetchCfg
from contextindex.errors import FetchError

logger = logging.getLogger(__name__)

_USER_AGENT = "contextindex/0.1"
_MAX_REDIRECTS = 3
_ALLOWED_CONTENT_TYPES = frozenset(["text/html", "text/plain", "text/markdown"])
_JSON_CONTENT_TYPES = frozenset(["application/json"])

_GITHUB_URL_RE = re.compile(
    r"^https?://(?:www\.)?github\.com/(?P<owner>[^/]+)/(?P<repo>[^/#?]+?)(?:\.git)?"
    r"(?:/tree/(?P<branch>[^/#?]+))?/?$"
)
_GITHUB_API = "https://api.github.com"
_GITHUB_RAW = "https://raw.githubusercontent.com"
_GITHUB_MAX_FILE_BYTES = 500_000
_GITHUB_EXTENSIONS = (".md", ".markdown")
_GITHUB_IGNORED_DIRS = frozenset(
    ["node_modules", ".git", "dist", "build", "__pycache__", "venv", ".venv", "vendor", "target", ".next"]
)

# html2text converter
_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


class SsrfError(FetchError):
    """Raised when a URL resolves to a private or reserved address."""


@dataclass(frozen=True)
class Document:
    """One fetched text; *path* names the file inside a multi-file source."""

    text: str
    path: str | None = None


class SourceFetcher:
    """Fetch the raw text behind a source location.

    Args:
        config: Fetch limits (timeout, body size cap, default GitHub branch).
        github_token: Optional bearer token for the GitHub API; defaults to
            the ``GITHUB_TOKEN`` environment variable.
    """

    def __init__(self, config: FetchCfg | None = None, github_token: str | None = None) -> None:
        self._config = config or FetchCfg()
        self._github_token = github_token if github_token is not None else os.environ.get("GITHUB_TOKEN")

    def fetch(self, location: str, cancel: CancelToken | None = None) -> list[Document]:
        """Return the documents at *location*.

        A file or web page yields one document; a GitHub repository yields one
        per Markdown file. Network requests never outlive *cancel*'s deadline.

        Raises:
            FetchError: The location cannot be read.
            IndexingCancelled: *cancel* fired between GitHub downloads.
        """
        if location.startswith(("https://", "http://")):
            match = _GITHUB_URL_RE.match(location)
            if match:
                return self._fetch_github(
                    match["owner"], match["repo"], match["branch"] or self._config.github_branch, cancel
                )
            return [Document(self._fetch_web(location, cancel))]
        if location.startswith("file://"):
            return [Document(self._read_file(Path(urllib.parse.unquote(urllib.parse.urlparse(location).path))))]
        if "://" in location:
            scheme = location.split("://", 1)[0]
            raise FetchError(
                f"Unsupported location scheme '{scheme}'. Use a file path, file://, http:// or https://."
            )
        return [Document(self._read_file(Path(location)))]

    # ------------------------------------------------------------------
    # Local files
    # ------------------------------------------------------------------

    @staticmethod
    def _read_file(path: Path) -> str:
        if not path.is_file():
            raise FetchError(f"File not found: '{path}'")
        try:
            if path.suffix.lower() == ".pdf":
                return _extract_pdf_text(path)
            return path.read_text(encoding="utf-8", errors="replace")
        except (OSError, PyPdfError) as exc:
            raise FetchError(f"Cannot read '{path}': {exc}") from exc

    # ------------------------------------------------------------------
    # Web pages
    # ------------------------------------------------------------------

    def _fetch_web(self, url: str, cancel: CancelToken | None = None) -> str:
        _check_ssrf(url)
        body, content_type = self._get(url, timeout=self._request_timeout(cancel))
        return _to_plain_text(body, content_type)

    def _request_timeout(self, cancel: CancelToken | None) -> float:
        """Configured timeout, shortened to what is left of the run's deadline."""
        remaining = cancel.remaining() if cancel is not None else None
        if remaining is None:
            return self._config.timeout
        return max(min(self._config.timeout, remaining), 0.001)

    def _get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        allowed_types: frozenset[str] = _ALLOWED_CONTENT_TYPES,
        timeout: float | None = None,
    ) -> tuple[bytes, str]:
        """GET *url* with timeout, redirect limit, size cap, and Content-Type check.

        Returns (body_bytes, content_type_without_params).
        """
        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT, **(headers or {})})
        opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS))

        try:
            response: HTTPResponse = opener.open(request, timeout=timeout or self._config.timeout)
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise FetchError(f"Failed to fetch URL '{url}': {exc}") from exc

        with response:
            raw_ct = response.headers.get("Content-Type", "text/html")
            ct = raw_ct.split(";")[0].strip().lower()
            if ct not in allowed_types:
                raise FetchError(
                    f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                    f"Accepted: {', '.join(sorted(allowed_types))}"
                )

            max_bytes = self._config.max_bytes
            try:
                body = response.read(max_bytes + 1)
            except OSError as exc:
                raise FetchError(f"Failed to read response from '{url}': {exc}") from exc
        if len(body) > max_bytes:
            raise FetchError(f"Response body exceeds {max_bytes} bytes for URL '{url}'.")
        return body, ct

    # ------------------------------------------------------------------
    # GitHub repositories
    # ------------------------------------------------------------------

    def _fetch_github(
        self, owner: str, repo: str, branch: str, cancel: CancelToken | None = None
    ) -> list[Document]:
        """One document per Markdown file; files that fail to download are skipped."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._github_token:
            headers["Authorization"] = f"Bearer {self._github_token}"

        tree_url = f"{_GITHUB_API}/repos/{owner}/{repo}/git/trees/{urllib.parse.quote(branch)}?recursive=1"
        body, _ = self._get(tree_url, headers, _JSON_CONTENT_TYPES, timeout=self._request_timeout(cancel))
        try:
            tree = json.loads(body).get("tree", [])
        except (ValueError, AttributeError) as exc:
            raise FetchError(f"Unexpected GitHub API response for {owner}/{repo}: {exc}") from exc

        files = [entry for entry in tree if _is_indexable_github_file(entry)]
        logger.info("GitHub %s/%s@%s: %d of %d entries indexable", owner, repo, branch, len(files), len(tree))
        if not files:
            raise FetchError(f"No Markdown files found in GitHub repository {owner}/{repo}@{branch}.")

        raw_headers = {"Authorization": headers["Authorization"]} if "Authorization" in headers else {}
        documents: list[Document] = []
        for entry in sorted(files, key=lambda e: e["path"]):
            if cancel is not None:
                cancel.raise_if_cancelled("fetch")
            path = entry["path"]
            raw_url = f"{_GITHUB_RAW}/{owner}/{repo}/{urllib.parse.quote(branch)}/{urllib.parse.quote(path)}"
            try:
                content, _ = self._get(raw_url, raw_headers, timeout=self._request_timeout(cancel))
            except FetchError as exc:
                logger.warning("Skipping %s in %s/%s: %s", path, owner, repo, exc.message)
                continue
            documents.append(Document(content.decode("utf-8", errors="replace"), path=path))

        if not documents:
            raise FetchError(
                f"None of the {len(files)} Markdown files in {owner}/{repo}@{branch} could be downloaded."
            )
        return documents


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _is_indexable_github_file(entry: dict) -> bool:
    if entry.get("type") != "blob":
        return False
    if entry.get("size", 0) > _GITHUB_MAX_FILE_BYTES:
        return False
    path = str(entry.get("path", ""))
    if any(part in _GITHUB_IGNORED_DIRS for part in path.split("/")):
        return False
    return path.lower().endswith(_GITHUB_EXTENSIONS)


def _check_ssrf(url: str) -> None:
    """Resolve the hostname and block private/reserved IP ranges."""
    parsed = urllib.parse.urlparse(url)
    hostname = parsed.hostname
    if not hostname:
        raise FetchError(f"URL has no hostname: {url}")

    try:
        addrinfos = socket.getaddrinfo(hostname, None)
    except socket.gaierror as exc:
        raise FetchError(f"DNS resolution failed for '{hostname}': {exc}") from exc

    for addrinfo in addrinfos:
        addr_str = addrinfo[4][0]
        try:
            ip = ipaddress.ip_address(addr_str)
        except ValueError:
            continue
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_multicast
            or ip.is_unspecified
        ):
            raise SsrfError(
                f"URL resolves to private address ({ip}). "
                "Access to internal network addresses is not allowed."
            )


def _to_plain_text(body: bytes, content_type: str) -> str:
    text = body.decode("utf-8", errors="replace")
    if content_type != "text/html":
        return text

    soup = BeautifulSoup(text, "html.parser")
    for tag in soup.find_all(["script", "style", "nav", "footer", "head"]):
        tag.decompose()
    return _h2t.handle(str(soup)).strip()


def _extract_pdf_text(path: Path) -> str:
    """Extract page text from the PDF at *path*; pages without text are skipped."""
    reader = pypdf.PdfReader(path)
    parts: list[str] = []
    for page in reader.pages:
        stripped = (page.extract_text() or "").strip()
        if stripped:
            parts.append(stripped)
    return "\n\n".join(parts)


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Raise after more than *max_redirects* redirects or on a redirect to a private address."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise FetchError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        _check_ssrf(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)

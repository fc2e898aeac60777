"""Outbound HTTP transport shared by the webhook-style notifiers.

The :class:`HTTPClient` owns a :class:`requests.Session` (and therefore its
connection pool) plus the worker threads used to make a blocking round trip
abortable through a :class:`~alertnotify.context.Context`.
"""

from __future__ import annotations

import logging
import re
import ssl
from concurrent import futures
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import quote, quote_plus, urlsplit

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import RequestException

from .config import ConfigError, HTTPClientConfig
from .context import Context
from .utils import validate_url

LOGGER = logging.getLogger(__name__)

REDACTED = "<redacted>"
PROXY_SCHEMES = ("http", "https", "socks5", "socks5h")
_POLL_INTERVAL = 0.05
_DRAIN_CHUNK = 64 * 1024

# Query parameters that carry credentials for the supported providers.
_SECRET_PARAMS = re.compile(r"((?:access_token|token|sign|secret)=)(?!<redacted>)[^&\s'\"<>)]+", re.IGNORECASE)
# Shorter secrets are only replaced as whole words so they do not mangle prose.
_MIN_SUBSTRING_SECRET = 6
_USERINFO = re.compile(r"(://)[^/@\s]+@")


def _check_readable(path_value: str, field_name: str) -> Path:
    path = Path(path_value).expanduser()
    if not path.is_file():
        raise ConfigError(f"'{field_name}' file not found: {path}")
    return path


def _validate_tls(config: HTTPClientConfig) -> tuple[object, Optional[tuple[str, str]]]:
    tls = config.tls
    verify: object = True
    if tls.ca_file:
        ca_path = _check_readable(tls.ca_file, "tls_config.ca_file")
        try:
            ssl.create_default_context().load_verify_locations(cafile=str(ca_path))
        except (ssl.SSLError, OSError) as exc:
            raise ConfigError(f"Unable to load CA bundle {ca_path}: {exc}") from exc
        verify = str(ca_path)
    if tls.insecure_skip_verify:
        verify = False

    if bool(tls.cert_file) != bool(tls.key_file):
        raise ConfigError("'tls_config.cert_file' and 'tls_config.key_file' must be configured together")
    cert: Optional[tuple[str, str]] = None
    if tls.cert_file and tls.key_file:
        cert_path = _check_readable(tls.cert_file, "tls_config.cert_file")
        key_path = _check_readable(tls.key_file, "tls_config.key_file")
        try:
            ssl.create_default_context().load_cert_chain(str(cert_path), str(key_path))
        except (ssl.SSLError, OSError) as exc:
            raise ConfigError(f"Unable to load client certificate {cert_path}: {exc}") from exc
        cert = (str(cert_path), str(key_path))
    return verify, cert


def build_session(config: HTTPClientConfig) -> requests.Session:
    """Create a session from transport settings without touching the network.

    Raises :class:`ConfigError` when TLS material or the proxy URL is unusable.
    """
    verify, cert = _validate_tls(config)
    if config.proxy_url and not validate_url(config.proxy_url, PROXY_SCHEMES):
        raise ConfigError(f"Invalid proxy URL scheme: {urlsplit(config.proxy_url).scheme or '<none>'}")

    session = requests.Session()
    session.verify = verify
    if cert is not None:
        session.cert = cert
    if config.proxy_url:
        session.proxies = {"http": config.proxy_url, "https": config.proxy_url}

    # Retries belong to the caller, so the adapter never retries on its own.
    adapter = HTTPAdapter(max_retries=0, pool_maxsize=config.pool_maxsize)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def drain(response: requests.Response) -> None:
    """Read whatever is left of the body and release the connection."""
    try:
        for _ in response.iter_content(chunk_size=_DRAIN_CHUNK):
            pass
    except RequestException as exc:
        LOGGER.debug("Discarding unreadable response body: %s", redact(str(exc)))
    finally:
        response.close()


def _drain_late_response(future: futures.Future) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    drain(future.result())


def redact(text: str, urls: Iterable[str] = (), secrets: Iterable[str] = ()) -> str:
    """Replace URLs, their query strings and known secrets with ``<redacted>``."""
    result = text
    fragments: list[str] = []
    short_secrets: set[str] = set()
    for url in urls:
        if not url:
            continue
        fragments.append(url)
        parts = urlsplit(url)
        if parts.query:
            fragments.append(f"{parts.path}?{parts.query}")
            fragments.append(parts.query)
    for secret in secrets:
        if not secret:
            continue
        for form in {secret, quote(secret, safe=""), quote_plus(secret)}:
            if len(form) >= _MIN_SUBSTRING_SECRET:
                fragments.append(form)
            else:
                short_secrets.add(form)
    # Longest first so a full URL is replaced before its own query string.
    for fragment in sorted(set(fragments), key=len, reverse=True):
        result = result.replace(fragment, REDACTED)
    for secret in short_secrets:
        result = re.sub(rf"(?<![\w-]){re.escape(secret)}(?![\w-])", REDACTED, result)
    result = _USERINFO.sub(lambda match: match.group(1) + REDACTED + "@", result)
    return _SECRET_PARAMS.sub(lambda match: match.group(1) + REDACTED, result)


class HTTPClient:
    """Session plus cancellation support for one notifier.

    Safe for concurrent use: the session pool is thread-safe for sending and
    the client holds no per-call state.
    """

    def __init__(
        self,
        config: HTTPClientConfig | None = None,
        *,
        session: requests.Session | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.config = config or HTTPClientConfig()
        if self.config.pool_maxsize < 1:
            raise ConfigError("'pool_maxsize' must be at least 1")
        self._session = session if session is not None else build_session(self.config)
        self._executor = futures.ThreadPoolExecutor(
            max_workers=max_workers or self.config.pool_maxsize,
            thread_name_prefix="alertnotify-http",
        )

    @property
    def session(self) -> requests.Session:
        return self._session

    def _round_trip(self, request: requests.PreparedRequest, timeout: float) -> requests.Response:
        response = self._session.send(
            request,
            timeout=timeout,
            allow_redirects=self.config.follow_redirects,
            stream=True,
        )
        try:
            # Body is read on the worker so a stalled body is still bounded by ctx.
            _ = response.content
        except RequestException:
            response.close()
            raise
        return response

    def send(self, ctx: Context, request: requests.PreparedRequest) -> requests.Response:
        """Send ``request`` and return the response with its body already read.

        Raises :class:`requests.RequestException` on transport failures and
        :class:`~alertnotify.context.ContextCancelled` as soon as ``ctx`` is
        done. The caller must :func:`drain` the returned response.
        """
        if ctx.done():
            raise ctx.error()

        timeout = self.config.timeout
        remaining = ctx.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)

        future = self._executor.submit(self._round_trip, request, timeout)
        while True:
            finished, _ = futures.wait([future], timeout=_POLL_INTERVAL)
            if finished:
                return future.result()
            if ctx.done():
                if not future.cancel():
                    future.add_done_callback(_drain_late_response)
                raise ctx.error()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._session.close()

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, List, Optional, Tuple

import backoff
import requests

from posthog_lite.utils import remove_trailing_slash
from posthog_lite.version import VERSION

_session = requests.sessions.Session()

US_INGESTION_ENDPOINT = "https://us.i.posthog.com"
EU_INGESTION_ENDPOINT = "https://eu.i.posthog.com"
DEFAULT_HOST = US_INGESTION_ENDPOINT
USER_AGENT = "posthog-lite/" + VERSION

DEFAULT_TIMEOUT = 5
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1

# Failures that happen before a status line is received. Anything else
# (an HTTP error status, an invalid URL) is not worth another attempt.
RETRYABLE_EXCEPTIONS = (requests.ConnectionError, requests.Timeout)

log = logging.getLogger("posthog_lite")


def determine_server_host(host: Optional[str]) -> str:
    """Determines the server host to use."""
    host_or_default = host or DEFAULT_HOST
    trimmed_host = remove_trailing_slash(host_or_default)
    if trimmed_host in ("https://app.posthog.com", "https://us.posthog.com"):
        return US_INGESTION_ENDPOINT
    elif trimmed_host == "https://eu.posthog.com":
        return EU_INGESTION_ENDPOINT
    else:
        return trimmed_host


@dataclass(frozen=True)
class Response:
    status: int
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class APIError(Exception):
    """The server answered with a non-2xx status."""

    def __init__(self, response: Response):
        self.response = response
        self.status = response.status
        self.headers = response.headers
        self.body = response.body
        if isinstance(response.body, dict) and "detail" in response.body:
            self.message = str(response.body["detail"])
        else:
            self.message = "Request failed"

    def __str__(self):
        msg = "[PostHog] {0} ({1})"
        return msg.format(self.message, self.status)


class TransportError(Exception):
    """The request never got a response, even after retrying."""

    def __init__(self, reason: Exception, attempts: int = 1):
        self.reason = reason
        self.attempts = attempts

    def __str__(self):
        return "[PostHog] {0} (after {1} attempt{2})".format(
            self.reason, self.attempts, "" if self.attempts == 1 else "s"
        )


class DatetimeSerializer(json.JSONEncoder):
    def default(self, obj: Any):
        if isinstance(obj, (date, datetime)):
            return obj.isoformat()

        return json.JSONEncoder.default(self, obj)


def _decode_body(res: requests.Response, decode: Callable[[str], Any]) -> Any:
    if not res.content:
        return None
    try:
        return decode(res.text)
    except ValueError:
        log.debug("response body is not valid JSON: %s", res.text)
        return None


def to_response(res: requests.Response, decode: Callable[[str], Any] = json.loads) -> Response:
    return Response(
        status=res.status_code,
        headers=list(res.headers.items()),
        body=_decode_body(res, decode),
    )


def _log_backoff(details):
    log.debug(
        "request to %s failed (attempt %d), retrying in %.2fs: %s",
        details["args"][0],
        details["tries"],
        details["wait"],
        details.get("exception"),
    )


def post(
    url: str,
    data,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_delay: float = DEFAULT_RETRY_DELAY,
    decode: Callable[[str], Any] = json.loads,
) -> Response:
    """
    POST `data` to `url`, retrying connection-level failures.

    Connection errors and timeouts are retried up to `max_retries` times,
    sleeping `retry_delay` seconds between attempts. A response with any
    status is final: 2xx statuses are returned, everything else raises
    `APIError`. When the retries are exhausted `TransportError` is raised
    with the last underlying exception.
    """
    return send(
        "POST",
        url,
        data=data,
        headers=headers,
        timeout=timeout,
        max_retries=max_retries,
        retry_delay=retry_delay,
        decode=decode,
    )


def send(
    method: str,
    url: str,
    data=None,
    headers: Optional[dict] = None,
    params: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_delay: float = DEFAULT_RETRY_DELAY,
    decode: Callable[[str], Any] = json.loads,
) -> Response:
    """Send a request with any HTTP method, under the same retry policy as `post`."""
    request_headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
    request_headers.update(headers or {})
    session_method = getattr(_session, method.lower())
    max_tries = max(0, max_retries) + 1
    attempts = 0

    @backoff.on_exception(
        backoff.constant,
        RETRYABLE_EXCEPTIONS,
        max_tries=max_tries,
        interval=retry_delay,
        jitter=None,
        on_backoff=_log_backoff,
    )
    def send_request(url):
        nonlocal attempts
        attempts += 1
        return session_method(
            url, data=data, params=params, headers=request_headers, timeout=timeout
        )

    log.debug("making %s request: %s to url: %s", method, data, url)
    try:
        res = send_request(url)
    except requests.RequestException as e:
        log.debug("giving up on %s after %d attempt(s): %s", url, attempts, e)
        raise TransportError(e, attempts) from e

    response = to_response(res, decode)
    if not response.ok:
        log.debug("received response: %s %s", response.status, response.body)
        raise APIError(response)

    log.debug("%s %s completed successfully", method, url)
    return response

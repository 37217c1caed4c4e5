import json
import os
from typing import Any, Callable, NamedTuple, Optional

from posthog_lite.request import DatetimeSerializer, determine_server_host

FALSY_ENV_VALUES = ("false", "0", "no", "off")


class ConfigError(ValueError):
    """Raised when the client is set up with a missing or invalid API key or host."""


def _encode(obj: Any) -> str:
    return json.dumps(obj, cls=DatetimeSerializer)


class JsonCodec(NamedTuple):
    encode: Callable[[Any], str] = _encode
    decode: Callable[[str], Any] = json.loads


def validate_api_key(api_key) -> str:
    if api_key is None:
        raise ConfigError(
            "PostHog API key is not configured. Pass it to the client, e.g. "
            "Posthog('phc_your_project_api_key'), or set POSTHOG_API_KEY."
        )
    if not isinstance(api_key, str) or not api_key.strip():
        raise ConfigError(
            "Invalid PostHog API key: %r. Expected a non-empty string." % (api_key,)
        )
    return api_key


def validate_host(host) -> str:
    if host is not None and (not isinstance(host, str) or not host.strip()):
        raise ConfigError(
            "Invalid PostHog host: %r. Expected a non-empty string URL, "
            "e.g. 'https://us.i.posthog.com'." % (host,)
        )
    server_host = determine_server_host(host)
    if not server_host.startswith(("http://", "https://")):
        raise ConfigError(
            "Invalid PostHog host: %r. The URL must start with http:// or https://."
            % (host,)
        )
    return server_host


class Config(object):
    """
    Settings shared by everything that talks to PostHog.

    The API key and host are validated as soon as the config is built, so a
    setup mistake fails loudly at startup instead of on the first request.

    Examples:
        ```python
        config = Config("phc_your_project_api_key", host="https://eu.posthog.com")
        config.api_url()  # "https://eu.i.posthog.com"
        ```
    """

    def __init__(
        self,
        api_key: str,
        host: Optional[str] = None,
        enabled_capture: bool = True,
        json_codec: Optional[JsonCodec] = None,
    ):
        self._api_key = validate_api_key(api_key)
        self._api_url = validate_host(host)
        self._enabled_capture = bool(enabled_capture)
        self._json_codec = json_codec or JsonCodec()

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "Config":
        """
        Build a config from `POSTHOG_API_KEY`, `POSTHOG_HOST` and
        `POSTHOG_ENABLED_CAPTURE`. Keyword overrides win over the environment.
        """
        environ = os.environ if environ is None else environ
        enabled = environ.get("POSTHOG_ENABLED_CAPTURE")
        settings = {
            "api_key": environ.get("POSTHOG_API_KEY"),
            "host": environ.get("POSTHOG_HOST"),
            "enabled_capture": enabled is None
            or enabled.strip().lower() not in FALSY_ENV_VALUES,
        }
        settings.update(overrides)
        return cls(**settings)

    def api_url(self) -> str:
        return self._api_url

    def api_key(self) -> str:
        return self._api_key

    def capture_enabled(self) -> bool:
        return self._enabled_capture

    def json_codec(self) -> JsonCodec:
        return self._json_codec

    def __repr__(self):
        return "Config(api_url=%r, enabled_capture=%r)" % (
            self._api_url,
            self._enabled_capture,
        )

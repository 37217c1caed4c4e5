from typing import Any, Dict, Iterable, Optional  # noqa: F401

from posthog_lite.client import Client, FlagNotFoundError
from posthog_lite.config import Config, ConfigError
from posthog_lite.event import Event, build_event
from posthog_lite.flag_called_cache import FlagCalledCache
from posthog_lite.management import FeatureFlagsAPI
from posthog_lite.request import APIError, Response, TransportError
from posthog_lite.types import FeatureFlagResult, FlagEvaluationResult, Result
from posthog_lite.version import VERSION

__version__ = VERSION

"""Settings."""
api_key = None  # type: Optional[str]
host = None  # type: Optional[str]
debug = False  # type: bool
enabled_capture = True  # type: bool
timeout = 5  # type: float
max_retries = 3  # type: int
retry_delay = 1  # type: float
feature_flags_max_retries = None  # type: Optional[int]
flag_called_cache_size = 50_000  # type: int
flag_called_cache_sweep_interval = 10  # type: float

default_client = None  # type: Optional[Client]


def capture(event, distinct_id, properties=None, **kwargs) -> Result[Response]:
    """
    Capture allows you to capture anything a user does within your system, which you can later use in PostHog to find patterns in usage, work out which features to improve or where people are giving up.

    A `capture` call requires
    - `event name` to specify the event
    - `distinct_id` of the user or group the event belongs to

    For example:
    ```python
    posthog_lite.api_key = 'phc_your_project_api_key'

    posthog_lite.capture('movie played', 'distinct_id_of_the_user', {'movie_id': '123', 'category': 'romcom'})

    # Capture an event associated with some group
    posthog_lite.capture('purchase', 'distinct_id_of_the_user', groups={'company': 'id:5'})
    ```
    """
    return _proxy("capture", event, distinct_id, properties, **kwargs)


def batch(events: Iterable, **kwargs) -> Result[Response]:
    """
    Send several events in one request.

    ```python
    posthog_lite.batch([
        ('page view', 'distinct_id_of_the_user', {'page': 'home'}),
        ('button click', 'distinct_id_of_the_user', {'button': 'signup'}),
    ])
    ```
    """
    return _proxy("batch", events, **kwargs)


def feature_flags(distinct_id, **kwargs) -> Result[FlagEvaluationResult]:
    """
    Evaluate all feature flags for a user.

    ```python
    result = posthog_lite.feature_flags('distinct_id_of_the_user', person_properties={'email': 'user@example.com'})
    ```
    """
    return _proxy("feature_flags", distinct_id, **kwargs)


def feature_flag(key, distinct_id, **kwargs) -> Result[FeatureFlagResult]:
    """
    Evaluate a single feature flag for a user, capturing `$feature_flag_called`
    the first time the user sees it.

    ```python
    result = posthog_lite.feature_flag('pricing-test', 'distinct_id_of_the_user')
    if result.ok and result.value.enabled == 'variant-a':
        price = result.value.payload['price']
    ```
    """
    return _proxy("feature_flag", key, distinct_id, **kwargs)


def feature_flag_enabled(key, distinct_id, **kwargs) -> bool:
    """
    Quick boolean check of a feature flag.

    ```python
    if posthog_lite.feature_flag_enabled('new-dashboard', 'distinct_id_of_the_user'):
        # Show new dashboard
    ```
    """
    return _proxy("feature_flag_enabled", key, distinct_id, **kwargs)


def shutdown():
    """Stop the background sweep of the default client's flag called cache"""
    global default_client
    if default_client:
        default_client.shutdown()
        default_client = None


def setup():
    global default_client
    if not default_client:
        cache = FlagCalledCache(
            max_size=flag_called_cache_size,
            sweep_interval=flag_called_cache_sweep_interval,
        )
        # the key is validated before the sweep thread is started
        default_client = Client(
            api_key,
            host=host,
            debug=debug,
            enabled_capture=enabled_capture,
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
            feature_flags_max_retries=feature_flags_max_retries,
            flag_called_cache=cache,
            own_cache=True,
        )
        cache.start()

    # always set incase user changes it
    default_client.debug = debug


def _proxy(method, *args, **kwargs):
    """Create an analytics client if one doesn't exist and send to it."""
    setup()

    fn = getattr(default_client, method)
    return fn(*args, **kwargs)


class Posthog(Client):
    pass


__all__ = [
    "APIError",
    "Client",
    "Config",
    "ConfigError",
    "Event",
    "FeatureFlagResult",
    "FeatureFlagsAPI",
    "FlagCalledCache",
    "FlagEvaluationResult",
    "FlagNotFoundError",
    "Posthog",
    "Response",
    "Result",
    "TransportError",
    "VERSION",
    "batch",
    "build_event",
    "capture",
    "feature_flag",
    "feature_flag_enabled",
    "feature_flags",
    "setup",
    "shutdown",
]

import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from posthog_lite.config import Config, JsonCodec
from posthog_lite.event import (
    Event,
    batch_payload,
    build_event,
    stringify_keys,
    to_api_payload,
)
from posthog_lite.flag_called_cache import FlagCalledCache
from posthog_lite.request import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    DEFAULT_TIMEOUT,
    APIError,
    Response,
    TransportError,
    post,
)
from posthog_lite.types import (
    FeatureFlagResult,
    FlagEvaluationResult,
    FlagValue,
    Result,
    normalize_decide_response,
)
from posthog_lite.utils import stringify_id, utc_now, uuid7

CAPTURE_PATH = "/capture"
DECIDE_PATH = "/decide?v=4"
FEATURE_FLAG_CALLED_EVENT = "$feature_flag_called"

Headers = Union[Mapping[str, str], Iterable]


class FlagNotFoundError(Exception):
    """The decide call worked, but the flag is not part of its answer."""

    def __init__(self, key: str):
        self.key = key

    def __str__(self):
        return "[PostHog] Feature flag {0!r} not found".format(self.key)


class Client(object):
    """
    Synchronous PostHog client for capturing events and evaluating feature flags.

    Every call talks to the API directly on the calling thread and returns a
    `Result`: HTTP errors, connection failures and unknown flags come back as
    `result.error` instead of being raised. Only a broken setup (missing API
    key, invalid host) raises, and it does so in the constructor.

    Examples:
        ```python
        from posthog_lite import Posthog
        from posthog_lite.flag_called_cache import FlagCalledCache

        posthog = Posthog(
            '<ph_project_api_key>',
            host='<ph_client_api_host>',
            flag_called_cache=FlagCalledCache().start(),
            own_cache=True,
        )
        posthog.capture('movie played', 'distinct_id_of_the_user', {'movie_id': 42})

        result = posthog.feature_flag('new-player', 'distinct_id_of_the_user')
        if result.ok and result.value.enabled:
            ...
        posthog.shutdown()
        ```
    """

    log = logging.getLogger("posthog_lite")

    def __init__(
        self,
        project_api_key: Optional[str] = None,
        host: Optional[str] = None,
        debug: bool = False,
        enabled_capture: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        feature_flags_max_retries: Optional[int] = None,
        flag_called_cache: Optional[FlagCalledCache] = None,
        own_cache: bool = False,
        flag_called_sender: Optional[Callable[[Event], Any]] = None,
        json_codec: Optional[JsonCodec] = None,
        config: Optional[Config] = None,
        now: Callable[[], str] = utc_now,
        uuid_factory: Callable[[], Any] = uuid7,
    ):
        """
        Initialize a new client.

        Args:
            project_api_key: The project API key. Ignored when `config` is given.
            host: The host to send requests to. Ignored when `config` is given.
            debug: Whether to log at DEBUG level.
            enabled_capture: When False, `capture` and `batch` report success
                without sending anything. Flag evaluation is unaffected.
            timeout: Connect/read timeout of a single attempt, in seconds.
            max_retries: Retries after a connection failure for capture calls.
            retry_delay: Seconds to wait between attempts.
            feature_flags_max_retries: Retries for decide calls, defaults to
                `max_retries`.
            flag_called_cache: Remembers which `$feature_flag_called` events
                were already sent. Without one, every evaluation sends one.
            own_cache: Stop `flag_called_cache` on `shutdown()`.
            flag_called_sender: Callable used to send `$feature_flag_called`
                events, defaults to sending them like `capture`.
            config: A prebuilt `Config`, replaces the key/host/codec arguments.
        """
        self.config = config or Config(
            project_api_key,
            host=host,
            enabled_capture=enabled_capture,
            json_codec=json_codec,
        )
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.feature_flags_max_retries = (
            max_retries if feature_flags_max_retries is None else feature_flags_max_retries
        )
        self.flag_called_cache = flag_called_cache
        self.own_cache = own_cache
        self.flag_called_sender = flag_called_sender or self._send_event
        self.now = now
        self.uuid_factory = uuid_factory
        self._warned_cache_unavailable = False
        self.debug = debug

    @property
    def debug(self) -> bool:
        return self._debug

    @debug.setter
    def debug(self, debug: bool):
        self._debug = debug
        if debug:
            # Ensures that debug level messages are logged when debug mode is on.
            # Otherwise, defaults to WARNING level.
            logging.basicConfig()
            self.log.setLevel(logging.DEBUG)
        else:
            self.log.setLevel(logging.WARNING)

    @property
    def api_key(self) -> str:
        return self.config.api_key()

    @property
    def host(self) -> str:
        return self.config.api_url()

    def capture(
        self,
        event,
        distinct_id,
        properties: Optional[Mapping] = None,
        *,
        timestamp=None,
        uuid=None,
        groups: Optional[Dict[str, str]] = None,
        headers: Optional[Headers] = None,
    ) -> Result[Response]:
        """
        Capture a single event.

        Args:
            event: The event name, anything with a string form.
            distinct_id: The distinct ID of the user (or group) doing it.
            properties: Event properties, nested mappings allowed.
            timestamp: When the event happened, defaults to now.
            uuid: Event identity, defaults to a new UUIDv7.
            groups: Group identifiers, sent as the `$groups` property.
            headers: Extra HTTP headers, e.g. `{"x-forwarded-for": ip}`.

        Examples:
            ```python
            posthog.capture(
                "user signed up",
                "distinct_id_of_the_user",
                {"login_type": "email", "is_free_trial": True},
            )
            ```

        Category:
            Capture
        """
        properties = dict(properties or {})
        if groups:
            properties["$groups"] = groups

        msg = self._build_event(
            event, distinct_id, properties, timestamp=timestamp, uuid=uuid
        )
        return self._send_event(msg, headers=headers)

    def batch(self, events: Iterable, *, headers: Optional[Headers] = None) -> Result[Response]:
        """
        Send several events in one request, in the order given.

        Each item is an `Event`, an `(event, distinct_id, properties)` tuple
        with an optional fourth timestamp element, or a mapping with the
        `event`, `distinct_id`, `properties`, `timestamp` and `uuid` keys.

        Category:
            Capture
        """
        msgs = [self._coerce_event(item) for item in events]
        if not self.config.capture_enabled():
            return self._capture_disabled(len(msgs))

        return self._post(
            CAPTURE_PATH, batch_payload(msgs), headers, self.max_retries
        )

    def feature_flags(
        self,
        distinct_id,
        *,
        groups: Optional[Dict[str, str]] = None,
        person_properties: Optional[Dict[str, Any]] = None,
        group_properties: Optional[Dict[str, Dict[str, Any]]] = None,
        headers: Optional[Headers] = None,
    ) -> Result[FlagEvaluationResult]:
        """
        Evaluate every feature flag for a user by calling decide.

        Always goes to the server, even when capture is disabled.

        Examples:
            ```python
            result = posthog.feature_flags(
                "distinct_id_of_the_user",
                groups={"company": "id:5"},
                group_properties={"company": {"industry": "tech"}},
            )
            if result.ok:
                result.value.flags  # {"beta-feature": True, "pricing": "variant-a"}
            ```

        Category:
            Feature Flags
        """
        body: Dict[str, Any] = {"distinct_id": stringify_id(distinct_id)}
        if groups is not None:
            body["groups"] = stringify_keys(groups)
        if group_properties is not None:
            body["group_properties"] = stringify_keys(group_properties)
        if person_properties is not None:
            body["person_properties"] = stringify_keys(person_properties)

        result = self._post(DECIDE_PATH, body, headers, self.feature_flags_max_retries)
        if not result.ok:
            return result

        self.log.debug("Feature flags decided successfully")
        return Result(value=normalize_decide_response(result.value.body))

    def feature_flag(
        self,
        key: str,
        distinct_id,
        *,
        groups: Optional[Dict[str, str]] = None,
        person_properties: Optional[Dict[str, Any]] = None,
        group_properties: Optional[Dict[str, Dict[str, Any]]] = None,
        send_feature_flag_event: bool = True,
        headers: Optional[Headers] = None,
    ) -> Result[FeatureFlagResult]:
        """
        Evaluate one feature flag for a user.

        This also captures the `$feature_flag_called` event, once per user and
        flag while the pair is remembered by the flag called cache, unless
        `send_feature_flag_event` is `False`.

        Examples:
            ```python
            result = posthog.feature_flag('flag-key', 'distinct_id_of_your_user')
            if result.ok and result.value.enabled == 'variant-key':
                # Do something differently for this user
                matched_flag_payload = result.value.payload
            ```

        Returns:
            A `Result` holding a `FeatureFlagResult`, the decide call's
            `APIError`/`TransportError`, or a `FlagNotFoundError`.

        Category:
            Feature Flags
        """
        result = self.feature_flags(
            distinct_id,
            groups=groups,
            person_properties=person_properties,
            group_properties=group_properties,
            headers=headers,
        )
        if not result.ok:
            return result

        evaluation = result.value
        value = evaluation.flags.get(key)
        if value is None:
            return Result(error=FlagNotFoundError(key))

        if send_feature_flag_event:
            self._capture_feature_flag_called(
                distinct_id, key, value, evaluation, groups
            )

        return Result(
            value=FeatureFlagResult(
                key=key, enabled=value, payload=evaluation.payloads.get(key)
            )
        )

    def feature_flag_enabled(self, key: str, distinct_id, **kwargs) -> bool:
        """
        Whether a flag is on for a user. Multivariate flags count as on when
        any variant is set; missing flags and failed requests count as off.

        Category:
            Feature Flags
        """
        result = self.feature_flag(key, distinct_id, **kwargs)
        if not result.ok:
            return False
        return result.value.enabled is not False

    def shutdown(self):
        """Stop the flag called cache sweep if this client owns the cache."""
        if self.own_cache and self.flag_called_cache is not None:
            self.flag_called_cache.stop()

    def _capture_feature_flag_called(
        self,
        distinct_id,
        key: str,
        response: FlagValue,
        evaluation: FlagEvaluationResult,
        groups: Optional[Dict[str, str]],
    ):
        cache_key = (stringify_id(distinct_id), key)
        if self._flag_already_reported(cache_key):
            self.log.debug("%s already reported for %s", key, distinct_id)
            return

        properties: Dict[str, Any] = {
            "distinct_id": stringify_id(distinct_id),
            "$feature_flag": key,
            "$feature_flag_response": response,
        }

        flag_details = evaluation.get_flag_details(key)
        if flag_details is not None:
            if flag_details.metadata is not None:
                if flag_details.metadata.id is not None:
                    properties["$feature_flag_id"] = flag_details.metadata.id
                if flag_details.metadata.version is not None:
                    properties["$feature_flag_version"] = flag_details.metadata.version
            if flag_details.reason and flag_details.reason.description:
                properties["$feature_flag_reason"] = flag_details.reason.description

        if evaluation.request_id:
            properties["$feature_flag_request_id"] = evaluation.request_id

        if groups:
            properties["$groups"] = groups

        sent = self.flag_called_sender(
            self._build_event(FEATURE_FLAG_CALLED_EVENT, distinct_id, properties)
        )
        if isinstance(sent, Result) and not sent.ok:
            self.log.warning(
                "[FEATURE FLAGS] Unable to capture %s for %s: %s",
                FEATURE_FLAG_CALLED_EVENT,
                key,
                sent.error,
            )

        self._record_flag_reported(cache_key)

    def _flag_already_reported(self, cache_key) -> bool:
        if self.flag_called_cache is None:
            self._warn_cache_unavailable()
            return False
        try:
            return self.flag_called_cache.exists(cache_key)
        except Exception as e:
            self._warn_cache_unavailable(e)
            return False

    def _record_flag_reported(self, cache_key):
        if self.flag_called_cache is None:
            return
        try:
            self.flag_called_cache.put(cache_key, True)
        except Exception as e:
            self._warn_cache_unavailable(e)

    def _warn_cache_unavailable(self, error: Optional[Exception] = None):
        if self._warned_cache_unavailable:
            return
        self._warned_cache_unavailable = True
        self.log.warning(
            "[FEATURE FLAGS] Flag called cache is unavailable%s, "
            "$feature_flag_called events will not be deduplicated.",
            "" if error is None else " (%s)" % error,
        )

    def _build_event(self, event, distinct_id, properties, *, timestamp=None, uuid=None) -> Event:
        return build_event(
            event,
            distinct_id,
            properties,
            timestamp=timestamp,
            uuid=uuid,
            now=self.now,
            uuid_factory=self.uuid_factory,
        )

    def _coerce_event(self, item) -> Event:
        if isinstance(item, Event):
            return item
        if isinstance(item, Mapping):
            return self._build_event(
                item["event"],
                item["distinct_id"],
                item.get("properties"),
                timestamp=item.get("timestamp"),
                uuid=item.get("uuid"),
            )
        if isinstance(item, (tuple, list)) and len(item) in (3, 4):
            timestamp = item[3] if len(item) == 4 else None
            return self._build_event(item[0], item[1], item[2], timestamp=timestamp)
        raise TypeError(
            f"Invalid batch item: {item!r}. Expected an Event, a mapping or an "
            f"(event, distinct_id, properties[, timestamp]) tuple."
        )

    def _send_event(self, msg: Event, headers: Optional[Headers] = None) -> Result[Response]:
        if not self.config.capture_enabled():
            return self._capture_disabled(1)

        return self._post(CAPTURE_PATH, to_api_payload(msg), headers, self.max_retries)

    def _capture_disabled(self, count: int) -> Result[Response]:
        self.log.debug("capture is disabled, dropping %d event(s)", count)
        return Result(value=Response(status=200, headers=[], body=None))

    def _post(self, path: str, body: Dict[str, Any], headers, max_retries: int) -> Result[Response]:
        codec = self.config.json_codec()
        data = codec.encode(
            {**body, "sentAt": self.now(), "api_key": self.config.api_key()}
        )
        url = self.config.api_url() + path
        try:
            response = post(
                url,
                data,
                headers=dict(headers or {}),
                timeout=self.timeout,
                max_retries=max_retries,
                retry_delay=self.retry_delay,
                decode=codec.decode,
            )
        except (APIError, TransportError) as e:
            self.log.warning("request to %s failed: %s", path, e)
            return Result(error=e)

        return Result(value=response)

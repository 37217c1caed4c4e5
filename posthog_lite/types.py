import json
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Mapping, Optional, TypeVar, Union

from typing_extensions import TypeAlias, TypedDict

FlagValue: TypeAlias = Union[bool, str]

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of a client call: either a `value` or an `error`, never both.

    Expected failures (HTTP errors, connection failures, unknown flags) are
    returned here rather than raised. Call `unwrap()` to get the value or
    have the error raised.
    """

    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


@dataclass(frozen=True)
class FlagReason:
    code: str
    condition_index: Optional[int]
    description: str

    @classmethod
    def from_json(cls, resp: Any) -> Optional["FlagReason"]:
        if not resp:
            return None
        return cls(
            code=resp.get("code", ""),
            condition_index=resp.get("condition_index"),
            description=resp.get("description", ""),
        )


@dataclass(frozen=True)
class FlagMetadata:
    id: Optional[int]
    payload: Any
    version: Optional[int]
    description: str

    @classmethod
    def from_json(cls, resp: Any) -> Optional["FlagMetadata"]:
        if not resp:
            return None
        return cls(
            id=resp.get("id"),
            payload=resp.get("payload"),
            version=resp.get("version"),
            description=resp.get("description", ""),
        )


@dataclass(frozen=True)
class FeatureFlag:
    """A single flag as described by the v4 decide response."""

    key: str
    enabled: bool
    variant: Optional[str]
    reason: Optional[FlagReason]
    metadata: Optional[FlagMetadata]

    def get_value(self) -> FlagValue:
        return self.variant if self.variant is not None else self.enabled

    @classmethod
    def from_json(cls, key: str, resp: Mapping[str, Any]) -> "FeatureFlag":
        return cls(
            key=key,
            enabled=resp.get("enabled"),
            variant=resp.get("variant"),
            reason=FlagReason.from_json(resp.get("reason")),
            metadata=FlagMetadata.from_json(resp.get("metadata")),
        )


@dataclass(frozen=True)
class FeatureFlagResult:
    """
    The evaluated value of one flag for one user.

    `enabled` is a boolean for on/off flags and the variant key for
    multivariate flags. `payload` has already been JSON-decoded when possible.
    """

    key: str
    enabled: FlagValue
    payload: Any = None

    def get_value(self) -> FlagValue:
        return self.enabled

    def is_boolean(self) -> bool:
        return isinstance(self.enabled, bool)


@dataclass(frozen=True)
class FlagEvaluationResult:
    flags: Dict[str, FlagValue] = field(default_factory=dict)
    payloads: Dict[str, Any] = field(default_factory=dict)
    # only set for v4 responses, holds the per-flag id/version/reason
    raw_flags: Optional[Dict[str, Any]] = None
    request_id: Optional[str] = None

    def get_flag_details(self, key: str) -> Optional[FeatureFlag]:
        if not self.raw_flags or not isinstance(self.raw_flags.get(key), Mapping):
            return None
        return FeatureFlag.from_json(key, self.raw_flags[key])


class FlagDetailsResponse(TypedDict, total=False):
    """v4 decide response, detected by the presence of `flags`."""

    flags: Dict[str, Dict[str, Any]]
    requestId: str
    errorsWhileComputingFlags: bool


class LegacyDecideResponse(TypedDict, total=False):
    """v3 decide response with flat value and payload mappings."""

    featureFlags: Dict[str, FlagValue]
    featureFlagPayloads: Dict[str, Any]
    requestId: str
    errorsWhileComputingFlags: bool


def _reject_constant(name):
    raise ValueError("%s is not valid JSON" % name)


def decode_payload(raw: Any) -> Any:
    """
    Decode a flag payload when it is a JSON string.

    Strings that are not valid JSON are returned unchanged, as is anything
    that is not a string (including `None` and already decoded values).
    """
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw, parse_constant=_reject_constant)
    except (ValueError, RecursionError):
        return raw


def _normalize_flag_details(resp: FlagDetailsResponse) -> FlagEvaluationResult:
    raw_flags = resp.get("flags") or {}
    flags = {}
    payloads = {}
    for key, details in raw_flags.items():
        details = details or {}
        variant = details.get("variant")
        flags[key] = variant if variant is not None else details.get("enabled")
        metadata = details.get("metadata") or {}
        payloads[key] = decode_payload(metadata.get("payload"))

    return FlagEvaluationResult(
        flags=flags,
        payloads=payloads,
        raw_flags=raw_flags,
        request_id=resp.get("requestId"),
    )


def _normalize_legacy(resp: LegacyDecideResponse) -> FlagEvaluationResult:
    feature_flags = resp.get("featureFlags") or {}
    feature_flag_payloads = resp.get("featureFlagPayloads") or {}
    return FlagEvaluationResult(
        flags=dict(feature_flags),
        payloads={
            key: decode_payload(value) for key, value in feature_flag_payloads.items()
        },
        raw_flags=None,
        request_id=resp.get("requestId"),
    )


def normalize_decide_response(resp: Optional[Mapping[str, Any]]) -> FlagEvaluationResult:
    """
    Normalize a v3 or v4 response from the decide API endpoint.

    Args:
        resp: The decoded response body. `None` (an empty or undecodable
            body) is treated as a response without any flags.

    Returns:
        A FlagEvaluationResult with flag values, decoded payloads and, for v4
        responses, the raw flag details.
    """
    if not isinstance(resp, Mapping):
        resp = {}
    if "flags" in resp:
        return _normalize_flag_details(resp)
    return _normalize_legacy(resp)

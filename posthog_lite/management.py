"""
Feature flag management through the PostHog REST API.

These endpoints are authenticated with a personal API key (`phx_...`), not
with the project API key used by `Client` for capture and flag evaluation.

Usage:

    from posthog_lite.management import FeatureFlagsAPI

    flags = FeatureFlagsAPI("phx_personal_api_key", project_id=12345)
    result = flags.list(limit=20)
    if result.ok:
        for flag in result.value["results"]:
            ...

    flags.update(42, {"active": False})

Every method returns a `Result` whose value is the decoded response body,
`None` for empty bodies (e.g. after a delete).
"""

import logging
from typing import Any, Dict, Mapping, Optional, Union

from posthog_lite.config import ConfigError, JsonCodec, validate_host
from posthog_lite.event import stringify_keys
from posthog_lite.request import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    DEFAULT_TIMEOUT,
    APIError,
    TransportError,
    send,
)
from posthog_lite.types import Result
from posthog_lite.utils import utc_now

ProjectId = Union[int, str]
FlagId = Union[int, str]


class FeatureFlagsAPI(object):
    log = logging.getLogger("posthog_lite")

    def __init__(
        self,
        personal_api_key: str,
        project_id: ProjectId = "@current",
        host: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        json_codec: Optional[JsonCodec] = None,
        now=utc_now,
    ):
        if not isinstance(personal_api_key, str) or not personal_api_key.strip():
            raise ConfigError(
                "PostHog personal API key is not configured. Create one in your "
                "PostHog settings and pass it, e.g. FeatureFlagsAPI('phx_...')."
            )
        self.personal_api_key = personal_api_key
        self.project_id = project_id
        self.host = validate_host(host)
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.json_codec = json_codec or JsonCodec()
        self.now = now

    def list(self, limit: Optional[int] = None, offset: Optional[int] = None) -> Result[Any]:
        return self._request("GET", self._path(), params={"limit": limit, "offset": offset})

    def get(self, flag_id: FlagId) -> Result[Any]:
        return self._request("GET", self._path(flag_id))

    def create(self, body: Mapping[str, Any]) -> Result[Any]:
        return self._request("POST", self._path(), body)

    def update(self, flag_id: FlagId, body: Mapping[str, Any]) -> Result[Any]:
        return self._request("PATCH", self._path(flag_id), body)

    def delete(self, flag_id: FlagId) -> Result[Any]:
        return self._request("DELETE", self._path(flag_id))

    def activity(self, flag_id: Optional[FlagId] = None) -> Result[Any]:
        """Change history of one flag, or of every flag in the project."""
        if flag_id is None:
            return self._request("GET", self._path("activity"))
        return self._request("GET", self._path(flag_id, "activity"))

    def evaluation_reasons(self) -> Result[Any]:
        return self._request("GET", self._path("evaluation_reasons"))

    def my_flags(self) -> Result[Any]:
        return self._request("GET", self._path("my_flags"))

    def local_evaluation(self) -> Result[Any]:
        """Flag definitions as served to SDKs that evaluate flags locally."""
        return self._request("GET", self._path("local_evaluation"))

    def user_blast_radius(self, body: Mapping[str, Any]) -> Result[Any]:
        return self._request("POST", self._path("user_blast_radius"), body)

    def create_static_cohort(self, flag_id: FlagId, body: Mapping[str, Any]) -> Result[Any]:
        return self._request(
            "POST", self._path(flag_id, "create_static_cohort_for_flag"), body
        )

    def create_dashboard(self, flag_id: FlagId, body: Mapping[str, Any]) -> Result[Any]:
        return self._request("POST", self._path(flag_id, "dashboard"), body)

    def enrich_usage_dashboard(self, flag_id: FlagId, body: Mapping[str, Any]) -> Result[Any]:
        return self._request("POST", self._path(flag_id, "enrich_usage_dashboard"), body)

    def role_access(
        self, flag_id: FlagId, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> Result[Any]:
        return self._request(
            "GET",
            self._path(flag_id, "role_access"),
            params={"limit": limit, "offset": offset},
        )

    def get_role_access(self, flag_id: FlagId, role_access_id) -> Result[Any]:
        return self._request("GET", self._path(flag_id, "role_access", role_access_id))

    def create_role_access(self, flag_id: FlagId, role_id) -> Result[Any]:
        return self._request("POST", self._path(flag_id, "role_access"), {"role_id": role_id})

    def delete_role_access(self, flag_id: FlagId, role_access_id) -> Result[Any]:
        return self._request("DELETE", self._path(flag_id, "role_access", role_access_id))

    def _path(self, *parts) -> str:
        path = "/api/projects/%s/feature_flags" % self.project_id
        return path + "".join("/%s" % part for part in parts)

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[Mapping[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Result[Any]:
        data = None
        if body is not None:
            body = stringify_keys(body)
            if method == "POST":
                body["sentAt"] = self.now()
            data = self.json_codec.encode(body)

        params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = send(
                method,
                self.host + path,
                data=data,
                headers={"Authorization": "Bearer %s" % self.personal_api_key},
                params=params or None,
                timeout=self.timeout,
                max_retries=self.max_retries,
                retry_delay=self.retry_delay,
                decode=self.json_codec.decode,
            )
        except (APIError, TransportError) as e:
            self.log.warning("%s %s failed: %s", method, path, e)
            return Result(error=e)

        return Result(value=response.body)

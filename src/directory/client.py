from __future__ import annotations

import logging
from typing import Any

import httpx

from directory.errors import (
    AlreadyActiveError,
    AlreadyInactiveError,
    DirectoryError,
    FilterNotSupportedError,
    NotFoundError,
    PermissionDeniedError,
    TransientError,
)
from directory.models import (
    ActiveAssignmentInstance,
    EligibilityRecord,
    Principal,
    RoleDefinition,
    ScheduleAction,
    ScheduleRequest,
)
from pim_lifecycle.observability import traced_directory_call

logger = logging.getLogger(__name__)

_ROLE_MANAGEMENT = "roleManagement/directory"

_ALREADY_ACTIVE_CODES = {"roleassignmentexists"}
_ALREADY_INACTIVE_CODES = {"roleassignmentdoesnotexist", "roleassignmentrequestnotfound"}


class DirectoryClient:
    """Typed access to the role management endpoints of the directory API.

    The ``http`` client is expected to carry the base URL and the bearer
    token; this class never touches credentials.
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    @traced_directory_call("get_me")
    async def get_me(self) -> Principal:
        data = await self._request("GET", "me")
        return Principal.model_validate(data)

    @traced_directory_call("list_eligibility")
    async def list_eligibility(self, principal_id: str) -> list[EligibilityRecord]:
        items = await self._list_for_principal(
            f"{_ROLE_MANAGEMENT}/roleEligibilityScheduleInstances", principal_id
        )
        return [EligibilityRecord.model_validate(item) for item in items]

    @traced_directory_call("list_active_assignments")
    async def list_active_assignments(
        self, principal_id: str
    ) -> list[ActiveAssignmentInstance]:
        items = await self._list_for_principal(
            f"{_ROLE_MANAGEMENT}/roleAssignmentScheduleInstances", principal_id
        )
        return [ActiveAssignmentInstance.model_validate(item) for item in items]

    @traced_directory_call("list_schedule_requests")
    async def list_schedule_requests(self, principal_id: str) -> list[ScheduleRequest]:
        items = await self._list_for_principal(
            f"{_ROLE_MANAGEMENT}/roleAssignmentScheduleRequests", principal_id
        )
        requests = (ScheduleRequest.from_graph(item) for item in items)
        return [request for request in requests if request is not None]

    @traced_directory_call("get_role_definition")
    async def get_role_definition(self, role_id: str) -> RoleDefinition:
        data = await self._request("GET", f"{_ROLE_MANAGEMENT}/roleDefinitions/{role_id}")
        return RoleDefinition.model_validate(data)

    @traced_directory_call("submit_schedule_request")
    async def submit_schedule_request(self, request: ScheduleRequest) -> ScheduleRequest:
        try:
            data = await self._request(
                "POST",
                f"{_ROLE_MANAGEMENT}/roleAssignmentScheduleRequests",
                json=request.to_payload(),
            )
        except DirectoryError as exc:
            classified = _classify_submission_error(exc, request.action)
            if classified is exc:
                raise
            raise classified from exc

        accepted = ScheduleRequest.from_graph(data) if data else None
        return accepted or request

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _list_for_principal(self, path: str, principal_id: str) -> list[dict[str, Any]]:
        try:
            return await self._list_all(
                path, params={"$filter": f"principalId eq '{principal_id}'"}
            )
        except FilterNotSupportedError:
            logger.warning(
                "Server-side principal filter rejected for %s; filtering locally", path
            )

        items = await self._list_all(path)
        return [item for item in items if item.get("principalId") == principal_id]

    async def _list_all(
        self, path: str, params: dict[str, str] | None = None
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        url: str | None = path
        filtered = bool(params)
        while url is not None:
            try:
                data = await self._request("GET", url, params=params)
            except DirectoryError as exc:
                if filtered and exc.status in (400, 501):
                    raise FilterNotSupportedError(
                        str(exc), code=exc.code, status=exc.status
                    ) from exc
                raise
            items.extend(data.get("value", []))
            url = data.get("@odata.nextLink")
            # nextLink already carries the query string
            params = None
        return items

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientError(f"Directory request timed out: {method} {url}") from exc
        except httpx.TransportError as exc:
            raise TransientError(f"Directory unreachable: {exc}") from exc

        if response.is_success:
            if not response.content:
                return {}
            return response.json()

        raise _error_from_response(response)


def _error_from_response(response: httpx.Response) -> DirectoryError:
    code: str | None = None
    message = response.reason_phrase or f"HTTP {response.status_code}"
    try:
        error = response.json().get("error") or {}
        code = error.get("code")
        message = error.get("message") or message
    except ValueError:
        pass

    status = response.status_code
    if status == 404:
        return NotFoundError(message, code=code, status=status)
    if status in (401, 403):
        return PermissionDeniedError(message, code=code, status=status)
    if status == 429 or status >= 500:
        return TransientError(message, code=code, status=status)
    return DirectoryError(message, code=code, status=status)


def _classify_submission_error(exc: DirectoryError, action: ScheduleAction) -> DirectoryError:
    code = (exc.code or "").lower()
    if code in _ALREADY_ACTIVE_CODES and action is ScheduleAction.ACTIVATE:
        return AlreadyActiveError(str(exc), code=exc.code, status=exc.status)
    if code in _ALREADY_INACTIVE_CODES and action is ScheduleAction.DEACTIVATE:
        return AlreadyInactiveError(str(exc), code=exc.code, status=exc.status)
    return exc

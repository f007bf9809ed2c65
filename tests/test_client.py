"""Tests for the directory API client, driven through httpx.MockTransport."""

from __future__ import annotations

import json
from datetime import timedelta

import httpx
import pytest

from conftest import PRINCIPAL_ID, START
from directory.client import DirectoryClient
from directory.errors import (
    AlreadyActiveError,
    AlreadyInactiveError,
    DirectoryError,
    NotFoundError,
    PermissionDeniedError,
    TransientError,
)
from directory.models import ScheduleAction, ScheduleRequest

BASE = "https://graph.test/v1.0/"
COLLECTIONS = "/v1.0/roleManagement/directory"


def make_client(handler) -> DirectoryClient:
    http = httpx.AsyncClient(base_url=BASE, transport=httpx.MockTransport(handler))
    return DirectoryClient(http)


def graph_error(status: int, code: str, message: str = "failed") -> httpx.Response:
    return httpx.Response(status, json={"error": {"code": code, "message": message}})


def eligibility_item(role: str, principal: str = PRINCIPAL_ID) -> dict:
    return {
        "id": f"elig-{role}",
        "roleDefinitionId": role,
        "principalId": principal,
        "directoryScopeId": "/",
        "startDateTime": "2026-01-01T00:00:00Z",
    }


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListing:
    async def test_eligibility_uses_server_side_filter(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"value": [eligibility_item("role-a")]})

        records = await make_client(handler).list_eligibility(PRINCIPAL_ID)

        assert [r.role_definition_id for r in records] == ["role-a"]
        assert seen[0].url.path == f"{COLLECTIONS}/roleEligibilityScheduleInstances"
        assert seen[0].url.params["$filter"] == f"principalId eq '{PRINCIPAL_ID}'"
        assert seen[0].headers.get("authorization") is None

    async def test_follows_next_link(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("$skiptoken") == "2":
                return httpx.Response(200, json={"value": [eligibility_item("role-b")]})
            return httpx.Response(
                200,
                json={
                    "value": [eligibility_item("role-a")],
                    "@odata.nextLink": f"{BASE}roleManagement/directory/roleEligibilityScheduleInstances?$skiptoken=2",
                },
            )

        records = await make_client(handler).list_eligibility(PRINCIPAL_ID)

        assert [r.role_definition_id for r in records] == ["role-a", "role-b"]

    async def test_rejected_filter_falls_back_to_local_filtering(self) -> None:
        calls: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.params.get("$filter"))
            if "$filter" in request.url.params:
                return graph_error(400, "Request_UnsupportedQuery")
            return httpx.Response(
                200,
                json={
                    "value": [
                        eligibility_item("role-a"),
                        eligibility_item("role-x", principal="someone-else"),
                    ]
                },
            )

        records = await make_client(handler).list_eligibility(PRINCIPAL_ID)

        assert [r.role_definition_id for r in records] == ["role-a"]
        assert calls[0] is not None and calls[1] is None

    async def test_active_assignments_parse_times(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "value": [
                        {
                            "roleDefinitionId": "role-a",
                            "principalId": PRINCIPAL_ID,
                            "directoryScopeId": "/",
                            "startDateTime": "2026-10-18T08:58:00Z",
                            "endDateTime": "2026-10-18T09:58:00Z",
                            "assignmentType": "Activated",
                        }
                    ]
                },
            )

        [instance] = await make_client(handler).list_active_assignments(PRINCIPAL_ID)

        assert instance.start_time == START - timedelta(minutes=2)
        assert instance.end_time - instance.start_time == timedelta(hours=1)
        assert instance.is_activated

    async def test_schedule_requests_skip_unrelated_actions(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "value": [
                        {
                            "action": "selfActivate",
                            "principalId": PRINCIPAL_ID,
                            "roleDefinitionId": "role-a",
                            "status": "Provisioned",
                            "createdDateTime": "2026-10-18T08:59:00Z",
                            "scheduleInfo": {
                                "startDateTime": "2026-10-18T08:59:30Z",
                                "expiration": {"type": "afterDuration", "duration": "PT2H30M"},
                            },
                        },
                        {"action": "adminUpdate", "principalId": PRINCIPAL_ID, "roleDefinitionId": "x"},
                    ]
                },
            )

        [request] = await make_client(handler).list_schedule_requests(PRINCIPAL_ID)

        assert request.action is ScheduleAction.ACTIVATE
        assert request.duration == timedelta(hours=2, minutes=30)
        assert request.created_time == START - timedelta(minutes=1)
        assert request.start_time == START - timedelta(seconds=30)

    async def test_schedule_request_without_creation_time_stays_undated(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            item = {
                "action": "selfActivate",
                "principalId": PRINCIPAL_ID,
                "roleDefinitionId": "role-a",
                "status": "Provisioned",
            }
            return httpx.Response(200, json={"value": [item]})

        [request] = await make_client(handler).list_schedule_requests(PRINCIPAL_ID)

        assert request.created_time is None
        assert request.start_time is None


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:
    async def test_missing_role_definition(self) -> None:
        client = make_client(lambda request: graph_error(404, "ResourceNotFound"))
        with pytest.raises(NotFoundError):
            await client.get_role_definition("nope")

    @pytest.mark.parametrize(
        "status, expected",
        [
            (401, PermissionDeniedError),
            (403, PermissionDeniedError),
            (429, TransientError),
            (503, TransientError),
            (409, DirectoryError),
        ],
    )
    async def test_status_mapping(self, status: int, expected: type) -> None:
        client = make_client(lambda request: graph_error(status, "Whatever", "boom"))
        with pytest.raises(expected) as info:
            await client.get_role_definition("role-a")
        assert info.value.status == status
        assert str(info.value) == "boom"

    async def test_network_failure_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientError):
            await make_client(handler).list_active_assignments(PRINCIPAL_ID)

    async def test_timeout_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransientError):
            await make_client(handler).get_me()


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


def activation(duration=timedelta(hours=2, minutes=30)) -> ScheduleRequest:
    return ScheduleRequest(
        action=ScheduleAction.ACTIVATE,
        principal_id=PRINCIPAL_ID,
        role_definition_id="role-a",
        justification="incident 42",
        duration=duration,
        created_time=START,
        start_time=START,
    )


class TestSubmit:
    async def test_activation_payload(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={**bodies[-1], "status": "Provisioned"})

        accepted = await make_client(handler).submit_schedule_request(activation())

        body = bodies[0]
        assert body["action"] == "selfActivate"
        assert body["principalId"] == PRINCIPAL_ID
        assert body["justification"] == "incident 42"
        assert body["scheduleInfo"]["expiration"] == {"type": "afterDuration", "duration": "PT2H30M"}
        assert accepted.status == "Provisioned"

    async def test_deactivation_payload_has_no_schedule(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={})

        request = ScheduleRequest(
            action=ScheduleAction.DEACTIVATE, principal_id=PRINCIPAL_ID, role_definition_id="role-a"
        )
        await make_client(handler).submit_schedule_request(request)

        assert bodies[0]["action"] == "selfDeactivate"
        assert "scheduleInfo" not in bodies[0]

    async def test_already_active(self) -> None:
        client = make_client(lambda request: graph_error(400, "RoleAssignmentExists"))
        with pytest.raises(AlreadyActiveError):
            await client.submit_schedule_request(activation())

    async def test_already_inactive(self) -> None:
        client = make_client(lambda request: graph_error(400, "RoleAssignmentDoesNotExist"))
        request = ScheduleRequest(
            action=ScheduleAction.DEACTIVATE, principal_id=PRINCIPAL_ID, role_definition_id="role-a"
        )
        with pytest.raises(AlreadyInactiveError):
            await client.submit_schedule_request(request)

    async def test_other_errors_pass_through(self) -> None:
        client = make_client(lambda request: graph_error(400, "ActiveDurationTooShort"))
        with pytest.raises(DirectoryError) as info:
            await client.submit_schedule_request(activation())
        assert info.value.code == "ActiveDurationTooShort"
        assert not isinstance(info.value, (AlreadyActiveError, AlreadyInactiveError))

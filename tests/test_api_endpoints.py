"""
End-to-end tests for the HTTP API.
"""
import json
from typing import Dict

import pytest
from httpx import AsyncClient

from tests.fixtures.accounts import AccountTestData

pytestmark = pytest.mark.integration

API = "/api"


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def signup_user(client: AsyncClient, name: str, email: str, password: str) -> Dict:
    response = await client.post(
        f"{API}/auth/user/signup",
        json={"name": name, "email": email, "password": password},
    )
    assert response.status_code == 200
    return response.json()


async def signup_institute(client: AsyncClient) -> Dict:
    response = await client.post(f"{API}/auth/institute/signup", json=AccountTestData.INSTITUTE_SIGNUP_BODY)
    assert response.status_code == 200
    return response.json()


async def upload(client: AsyncClient, token: str, recipients, content: bytes = b"Syllabus v1\n", **fields):
    data = {"recipients": json.dumps(recipients)}
    data.update(fields)
    return await client.post(
        f"{API}/documents/upload",
        headers=bearer(token),
        files={"document": ("syllabus.txt", content, "text/plain")},
        data=data,
    )


class TestAuthEndpoints:

    @pytest.mark.asyncio
    async def test_signup_and_me(self, client: AsyncClient):
        body = await signup_user(client, **AccountTestData.USER)

        assert body["role"] == "user"
        assert body["token_type"] == "bearer"

        response = await client.get(f"{API}/auth/me", headers=bearer(body["token"]))
        assert response.status_code == 200
        assert response.json()["email"] == AccountTestData.USER["email"]
        assert response.json()["name"] == AccountTestData.USER["name"]

    @pytest.mark.asyncio
    async def test_institute_signup_uses_admin_credentials(self, client: AsyncClient):
        await signup_institute(client)

        response = await client.post(
            f"{API}/auth/institute/login",
            json={
                "email": AccountTestData.INSTITUTE["admin_email"],
                "password": AccountTestData.INSTITUTE["password"],
            },
        )

        assert response.status_code == 200
        account = response.json()["account"]
        assert account["role"] == "institute"
        assert account["admin_name"] == AccountTestData.INSTITUTE["admin_name"]

    @pytest.mark.asyncio
    async def test_duplicate_signup(self, client: AsyncClient):
        await signup_user(client, **AccountTestData.USER)

        response = await client.post(f"{API}/auth/user/signup", json=AccountTestData.USER_SIGNUP_BODY)

        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == "AUTH_002"
        assert body["msg"] == body["error"]["message"]

    @pytest.mark.asyncio
    async def test_wrong_password(self, client: AsyncClient):
        await signup_user(client, **AccountTestData.USER)

        response = await client.post(
            f"{API}/auth/user/login",
            json={"email": AccountTestData.USER["email"], "password": "not-the-password"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["kind"] == "Unauthorized"

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient):
        response = await client.get(f"{API}/dashboard/user/institutes")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["error"]["code"] == "AUTH_004"

    @pytest.mark.asyncio
    async def test_garbage_token(self, client: AsyncClient):
        response = await client.get(f"{API}/auth/me", headers=bearer("not-a-jwt"))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_003"

    @pytest.mark.asyncio
    async def test_legacy_token_header(self, client: AsyncClient):
        body = await signup_user(client, **AccountTestData.USER)

        response = await client.get(f"{API}/dashboard/user/institutes", headers={"x-auth-token": body["token"]})

        assert response.status_code == 200
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_wrong_role(self, client: AsyncClient):
        body = await signup_user(client, **AccountTestData.USER)

        response = await client.get(f"{API}/dashboard/institute/pending", headers=bearer(body["token"]))

        assert response.status_code == 403
        assert response.json()["error"]["kind"] == "Forbidden"


class TestMembershipFlow:

    @pytest.mark.asyncio
    async def test_join_approve_leave(self, client: AsyncClient):
        institute = await signup_institute(client)
        user = await signup_user(client, **AccountTestData.USER)
        institute_id = institute["account"]["id"]
        user_id = user["account"]["id"]

        response = await client.post(f"{API}/dashboard/user/join/{institute_id}", headers=bearer(user["token"]))
        assert response.status_code == 200
        assert response.json()["msg"] == "Request sent"
        assert response.json()["request"]["state"] == "pending"

        response = await client.post(f"{API}/dashboard/user/join/{institute_id}", headers=bearer(user["token"]))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MEM_002"

        pending = await client.get(f"{API}/dashboard/institute/pending", headers=bearer(institute["token"]))
        assert [r["user"]["id"] for r in pending.json()] == [user_id]

        response = await client.put(
            f"{API}/dashboard/institute/approve/{user_id}",
            headers=bearer(institute["token"]),
            json={"newGroupName": "Cohort-A"},
        )
        assert response.status_code == 200
        assert response.json()["request"]["group"]["name"] == "Cohort-A"

        response = await client.put(
            f"{API}/dashboard/institute/approve/{user_id}",
            headers=bearer(institute["token"]),
            json={"newGroupName": "Cohort-A"},
        )
        assert response.status_code == 409

        linked = await client.get(f"{API}/dashboard/institute/linked-users", headers=bearer(institute["token"]))
        assert [(u["id"], u["group"]["name"]) for u in linked.json()] == [(user_id, "Cohort-A")]

        institutes = await client.get(f"{API}/dashboard/user/institutes", headers=bearer(user["token"]))
        assert [i["id"] for i in institutes.json()] == [institute_id]

        response = await client.post(f"{API}/dashboard/user/leave/{institute_id}", headers=bearer(user["token"]))
        assert response.status_code == 200
        assert response.json() == {"msg": "Left institute"}

        institutes = await client.get(f"{API}/dashboard/user/institutes", headers=bearer(user["token"]))
        assert institutes.json() == []

    @pytest.mark.asyncio
    async def test_approve_without_group_info(self, client: AsyncClient):
        institute = await signup_institute(client)
        user = await signup_user(client, **AccountTestData.USER)
        await client.post(f"{API}/dashboard/user/join/{institute['account']['id']}", headers=bearer(user["token"]))

        response = await client.put(
            f"{API}/dashboard/institute/approve/{user['account']['id']}",
            headers=bearer(institute["token"]),
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VAL_002"

    @pytest.mark.asyncio
    async def test_reject_then_unblock(self, client: AsyncClient):
        institute = await signup_institute(client)
        user = await signup_user(client, **AccountTestData.USER)
        institute_id = institute["account"]["id"]
        user_id = user["account"]["id"]
        await client.post(f"{API}/dashboard/user/join/{institute_id}", headers=bearer(user["token"]))

        response = await client.put(f"{API}/dashboard/institute/reject/{user_id}", headers=bearer(institute["token"]))
        assert response.json()["request"]["state"] == "rejected"

        rejected = await client.get(f"{API}/dashboard/institute/rejected", headers=bearer(institute["token"]))
        assert [r["user"]["id"] for r in rejected.json()] == [user_id]

        blocked = await client.post(f"{API}/dashboard/user/join/{institute_id}", headers=bearer(user["token"]))
        assert blocked.status_code == 400

        response = await client.delete(f"{API}/dashboard/institute/rejected/{user_id}", headers=bearer(institute["token"]))
        assert response.json() == {"msg": "User unblocked"}

        rejoined = await client.post(f"{API}/dashboard/user/join/{institute_id}", headers=bearer(user["token"]))
        assert rejoined.status_code == 200

    @pytest.mark.asyncio
    async def test_join_unknown_institute(self, client: AsyncClient):
        user = await signup_user(client, **AccountTestData.USER)

        response = await client.post(
            f"{API}/dashboard/user/join/00000000-0000-0000-0000-000000000000",
            headers=bearer(user["token"]),
        )

        assert response.status_code == 404
        assert response.json()["error"]["kind"] == "NotFound"


class TestRequestValidation:

    @pytest.mark.asyncio
    async def test_malformed_path_id_is_not_found(self, client: AsyncClient):
        user = await signup_user(client, **AccountTestData.USER)

        response = await client.post(f"{API}/dashboard/user/join/not-an-id", headers=bearer(user["token"]))

        assert response.status_code == 404
        body = response.json()
        assert body["error"]["kind"] == "NotFound"
        assert body["error"]["code"] == "REQ_001"
        assert body["msg"] == body["error"]["message"]
        assert body["error"]["details"]["errors"][0]["loc"] == ["path", "institute_id"]

    @pytest.mark.asyncio
    async def test_malformed_document_id_is_not_found(self, client: AsyncClient):
        user = await signup_user(client, **AccountTestData.USER)

        response = await client.get(f"{API}/documents/12345/view", headers=bearer(user["token"]))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_malformed_body_is_invalid_argument(self, client: AsyncClient):
        response = await client.post(
            f"{API}/auth/user/signup",
            json={"name": "Asha Verma", "email": "not-an-email", "password": "Student@Pass123"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"]["kind"] == "InvalidArgument"
        assert body["error"]["code"] == "VAL_001"
        assert "detail" not in body

    @pytest.mark.asyncio
    async def test_malformed_group_id_in_approval_body(self, client: AsyncClient):
        institute = await signup_institute(client)
        user = await signup_user(client, **AccountTestData.USER)
        await client.post(f"{API}/dashboard/user/join/{institute['account']['id']}", headers=bearer(user["token"]))

        response = await client.put(
            f"{API}/dashboard/institute/approve/{user['account']['id']}",
            headers=bearer(institute["token"]),
            json={"groupId": "cohort"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["kind"] == "InvalidArgument"


class TestDocumentFlow:

    @pytest.mark.asyncio
    async def test_view_once_distribution(self, client: AsyncClient):
        institute = await signup_institute(client)
        first = await signup_user(client, **AccountTestData.USER)
        second = await signup_user(client, **AccountTestData.OTHER_USER)
        institute_id = institute["account"]["id"]

        for member in (first, second):
            await client.post(f"{API}/dashboard/user/join/{institute_id}", headers=bearer(member["token"]))
            response = await client.put(
                f"{API}/dashboard/institute/approve/{member['account']['id']}",
                headers=bearer(institute["token"]),
                json={"newGroupName": "Cohort-A"},
            )
            assert response.status_code == 200

        groups = await client.get(f"{API}/dashboard/institute/groups", headers=bearer(institute["token"]))
        [group] = groups.json()
        assert len(group["members"]) == 2

        response = await upload(client, institute["token"], ["Cohort-A"], expiryDays="7", viewOnce="true")
        assert response.status_code == 200
        body = response.json()
        assert body["msg"] == "Document distributed"
        assert body["document"]["recipient_count"] == 2
        assert body["document"]["policy"] == {"expiry_days": 7, "view_once": True, "watermark": True}
        document_id = body["document"]["id"]

        inbox = await client.get(f"{API}/documents/inbox", headers=bearer(first["token"]))
        assert [item["document_id"] for item in inbox.json()] == [document_id]

        response = await client.get(f"{API}/documents/{document_id}/view", headers=bearer(first["token"]))
        assert response.status_code == 200
        assert response.content.startswith(b"Syllabus v1\n")
        assert AccountTestData.USER["email"] in response.headers["X-Watermark"]
        assert response.headers["Content-Disposition"] == "inline; filename*=UTF-8''syllabus.txt"

        response = await client.get(f"{API}/documents/{document_id}/view", headers=bearer(first["token"]))
        assert response.status_code == 410
        assert response.json()["error"]["kind"] == "AlreadyConsumed"

        response = await client.get(f"{API}/documents/{document_id}/view", headers=bearer(second["token"]))
        assert response.status_code == 200

        sent = await client.get(f"{API}/documents", headers=bearer(institute["token"]))
        assert [d["id"] for d in sent.json()] == [document_id]

    @pytest.mark.asyncio
    async def test_non_recipient_is_forbidden(self, client: AsyncClient):
        institute = await signup_institute(client)
        member = await signup_user(client, **AccountTestData.USER)
        outsider = await signup_user(client, **AccountTestData.OTHER_USER)
        institute_id = institute["account"]["id"]

        await client.post(f"{API}/dashboard/user/join/{institute_id}", headers=bearer(member["token"]))
        approved = await client.put(
            f"{API}/dashboard/institute/approve/{member['account']['id']}",
            headers=bearer(institute["token"]),
            json={"newGroupName": "Cohort-A"},
        )
        group_id = approved.json()["request"]["group"]["id"]

        response = await upload(client, institute["token"], [group_id], watermark="false")
        document_id = response.json()["document"]["id"]

        response = await client.get(f"{API}/documents/{document_id}/view", headers=bearer(outsider["token"]))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "DOC_002"

        response = await client.get(f"{API}/documents/{document_id}/view", headers=bearer(member["token"]))
        assert response.content == b"Syllabus v1\n"
        assert "X-Watermark" not in response.headers

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "recipients, fields, code",
        [
            ([], {}, "VAL_004"),
            (["Cohort-A"], {"expiryDays": "0"}, "VAL_003"),
            (["Cohort-A"], {"expiryDays": "soon"}, "VAL_003"),
        ],
    )
    async def test_upload_validation(self, client: AsyncClient, recipients, fields, code):
        institute = await signup_institute(client)
        await client.post(
            f"{API}/dashboard/institute/groups",
            headers=bearer(institute["token"]),
            json={"name": "Cohort-A"},
        )

        response = await upload(client, institute["token"], recipients, **fields)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == code

    @pytest.mark.asyncio
    async def test_upload_requires_institute(self, client: AsyncClient):
        user = await signup_user(client, **AccountTestData.USER)

        response = await upload(client, user["token"], ["Cohort-A"])

        assert response.status_code == 403


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get(f"{API}/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["components"] == {"database": "healthy"}

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: AsyncClient):
        response = await client.get("/", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

# tests/test_comments.py - Defect comment tests
import os

import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers, stored_path, upload_file


@pytest.mark.asyncio
class TestComments:
    async def test_any_role_can_comment(self, client: AsyncClient, engineer_user, test_defect):
        res = await client.post("/api/comments", json={
            "defect_id": test_defect.id,
            "text": "Checked on site, crack is 3mm wide",
        }, headers=get_auth_headers(engineer_user))
        assert res.status_code == 201
        data = res.json()
        assert data["defect_id"] == test_defect.id
        assert data["created_by"] == engineer_user.id
        assert data["text"] == "Checked on site, crack is 3mm wide"
        assert data["created_at"]

    async def test_requires_token(self, client: AsyncClient, test_defect):
        res = await client.post("/api/comments", json={"defect_id": test_defect.id, "text": "hi"})
        assert res.status_code == 401

    async def test_text_required(self, client: AsyncClient, engineer_user, test_defect):
        res = await client.post("/api/comments", json={"defect_id": test_defect.id},
                                headers=get_auth_headers(engineer_user))
        assert res.status_code == 400
        assert res.json() == {"error": "defect_id and text are required"}

    async def test_missing_defect(self, client: AsyncClient, engineer_user):
        res = await client.post("/api/comments", json={"defect_id": 9999, "text": "hi"},
                                headers=get_auth_headers(engineer_user))
        assert res.status_code == 404
        assert res.json() == {"error": "defect not found"}

    async def test_list_newest_first(self, client: AsyncClient, engineer_user, manager_user, test_defect):
        first = await client.post("/api/comments", json={"defect_id": test_defect.id, "text": "first"},
                                  headers=get_auth_headers(engineer_user))
        second = await client.post("/api/comments", json={"defect_id": test_defect.id, "text": "second"},
                                   headers=get_auth_headers(manager_user))

        res = await client.get("/api/comments", params={"defect_id": test_defect.id})
        assert res.status_code == 200
        assert [c["id"] for c in res.json()] == [second.json()["id"], first.json()["id"]]

    async def test_list_requires_defect_id(self, client: AsyncClient):
        res = await client.get("/api/comments")
        assert res.status_code == 400

    async def test_get_missing_comment(self, client: AsyncClient):
        res = await client.get("/api/comments/9999")
        assert res.status_code == 404
        assert res.json() == {"error": "comment not found"}

    async def test_no_update_endpoint(self, client: AsyncClient, engineer_user, test_defect):
        created = await client.post("/api/comments", json={"defect_id": test_defect.id, "text": "fixed"},
                                    headers=get_auth_headers(engineer_user))
        res = await client.patch(f"/api/comments/{created.json()['id']}", json={"text": "changed"},
                                 headers=get_auth_headers(engineer_user))
        assert res.status_code == 405


@pytest.mark.asyncio
class TestDeleteComment:
    async def test_observer_deletes(self, client: AsyncClient, observer_user, engineer_user, test_defect):
        created = await client.post("/api/comments", json={"defect_id": test_defect.id, "text": "spam"},
                                    headers=get_auth_headers(engineer_user))
        comment_id = created.json()["id"]

        res = await client.delete(f"/api/comments/{comment_id}", headers=get_auth_headers(observer_user))
        assert res.status_code == 200
        assert res.text == f"Successfully deleted comment with id {comment_id}"

        res = await client.get(f"/api/comments/{comment_id}")
        assert res.status_code == 404

    async def test_manager_cannot_delete(self, client: AsyncClient, manager_user, test_defect):
        created = await client.post("/api/comments", json={"defect_id": test_defect.id, "text": "keep"},
                                    headers=get_auth_headers(manager_user))
        res = await client.delete(f"/api/comments/{created.json()['id']}",
                                  headers=get_auth_headers(manager_user))
        assert res.status_code == 403

    async def test_delete_removes_attachments_and_files(
        self, client: AsyncClient, observer_user, manager_user, test_defect
    ):
        created = await client.post("/api/comments", json={"defect_id": test_defect.id, "text": "photo"},
                                    headers=get_auth_headers(manager_user))
        comment_id = created.json()["id"]
        attachment = (await upload_file(
            client, f"/api/comments/{comment_id}/attachments", manager_user, name="gap.png",
        )).json()

        res = await client.delete(f"/api/comments/{comment_id}", headers=get_auth_headers(observer_user))
        assert res.status_code == 200

        res = await client.get(f"/api/comment-attachments/{attachment['id']}")
        assert res.status_code == 404
        assert not os.path.exists(stored_path(attachment["url"]))

    async def test_delete_missing_comment(self, client: AsyncClient, observer_user):
        res = await client.delete("/api/comments/9999", headers=get_auth_headers(observer_user))
        assert res.status_code == 404

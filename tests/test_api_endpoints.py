"""Tests for the HTTP surface."""
import pytest

from aicore.services.system_templates import seed_system_templates

USER = {"X-User-Id": "1"}
OTHER = {"X-User-Id": "2"}
ADMIN = {"X-User-Id": "99", "X-User-Role": "admin"}


class TestIdentity:
    async def test_missing_user_header_rejected(self, client):
        response = await client.get("/conversations")
        assert response.status_code == 422


class TestConversationsAPI:
    async def test_create_append_and_read(self, client, ai_model):
        response = await client.post(
            "/conversations",
            json={"model_id": ai_model.id, "title": "Lead chat", "initial_message": "hi"},
            headers=USER,
        )
        assert response.status_code == 201
        conversation = response.json()
        assert conversation["message_count"] == 1
        assert conversation["owner_id"] == 1

        response = await client.post(
            f"/conversations/{conversation['id']}/messages",
            json={"role": "assistant", "content": "hello", "metadata": {"source": "test"}},
            headers=USER,
        )
        assert response.status_code == 201
        assert response.json()["sequence"] == 2
        assert response.json()["metadata"] == {"source": "test"}

        response = await client.get(f"/conversations/{conversation['id']}", headers=USER)
        data = response.json()
        assert data["conversation"]["message_count"] == 2
        assert [m["content"] for m in data["messages"]] == ["hi", "hello"]

    async def test_other_users_conversation_is_not_found(self, client, ai_model):
        created = (await client.post(
            "/conversations", json={"model_id": ai_model.id, "title": "Private"}, headers=USER
        )).json()

        response = await client.get(f"/conversations/{created['id']}", headers=OTHER)
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

        response = await client.get(f"/conversations/{created['id']}", headers=ADMIN)
        assert response.status_code == 200

    async def test_append_to_archived_conflicts(self, client, ai_model):
        created = (await client.post(
            "/conversations", json={"model_id": ai_model.id, "title": "Done"}, headers=USER
        )).json()
        await client.post(f"/conversations/{created['id']}/archive", headers=USER)

        response = await client.post(
            f"/conversations/{created['id']}/messages", json={"content": "late"}, headers=USER
        )
        assert response.status_code == 409

        await client.post(f"/conversations/{created['id']}/unarchive", headers=USER)
        response = await client.post(
            f"/conversations/{created['id']}/messages", json={"content": "late"}, headers=USER
        )
        assert response.status_code == 201

    async def test_bad_role_is_validation_error(self, client, ai_model):
        created = (await client.post(
            "/conversations", json={"model_id": ai_model.id, "title": "Chat"}, headers=USER
        )).json()
        response = await client.post(
            f"/conversations/{created['id']}/messages", json={"role": "robot", "content": "x"}, headers=USER
        )
        assert response.status_code == 422
        assert "allowed_roles" in response.json()

    async def test_list_and_delete(self, client, ai_model):
        created = (await client.post(
            "/conversations", json={"model_id": ai_model.id, "title": "Temp"}, headers=USER
        )).json()

        listing = (await client.get("/conversations", headers=USER)).json()
        assert listing["total"] == 1
        assert listing["items"][0]["id"] == created["id"]

        response = await client.delete(f"/conversations/{created['id']}", headers=USER)
        assert response.status_code == 204
        assert (await client.get("/conversations", headers=USER)).json()["total"] == 0


class TestTemplatesAPI:
    async def test_create_render_and_rate(self, client):
        response = await client.post(
            "/templates",
            json={
                "name": "Greeting",
                "category": "general",
                "template": "Hello {{name}}, your role is {{role}} at {{company}}.",
                "tags": ["intro"],
            },
            headers=USER,
        )
        assert response.status_code == 201
        template = response.json()
        assert template["variables"] == ["name", "role", "company"]
        assert template["slug"] == "greeting"

        response = await client.post(
            f"/templates/{template['id']}/render",
            json={"data": {"name": "John", "role": "Developer"}},
            headers=USER,
        )
        assert response.status_code == 422
        assert response.json()["missing_variables"] == ["company"]

        response = await client.post(
            f"/templates/{template['id']}/render",
            json={"data": {"name": "John", "role": "Developer", "company": "Tech Corp"}},
            headers=USER,
        )
        assert response.status_code == 200
        assert response.json()["rendered"] == "Hello John, your role is Developer at Tech Corp."
        assert response.json()["usage_count"] == 1

        for rating, expected in ((5, 5.0), (3, 4.0)):
            response = await client.post(
                f"/templates/{template['id']}/rate", json={"rating": rating}, headers=USER
            )
            assert response.json()["avg_rating"] == pytest.approx(expected)

        response = await client.post(f"/templates/{template['id']}/rate", json={"rating": 9}, headers=USER)
        assert response.status_code == 422

    async def test_validate_endpoint(self, client):
        template = (await client.post(
            "/templates",
            json={"name": "T", "category": "c", "template": "{{a}} {{b}}"},
            headers=USER,
        )).json()
        response = await client.post(f"/templates/{template['id']}/validate", json={"data": {"a": 1}}, headers=USER)
        assert response.json() == {"valid": False, "missing_variables": ["b"], "required_variables": ["a", "b"]}

    async def test_system_template_is_read_only(self, client, db_session):
        seed_system_templates(db_session)
        listing = (await client.get("/templates", params={"visibility": "system"}, headers=ADMIN)).json()
        system_id = listing["items"][0]["id"]

        response = await client.put(f"/templates/{system_id}", json={"name": "Hijacked"}, headers=ADMIN)
        assert response.status_code == 403

        response = await client.post(f"/templates/{system_id}/duplicate", headers=USER)
        assert response.status_code == 201
        assert response.json()["is_system"] is False
        assert response.json()["owner_id"] == 1

    async def test_foreign_template_update_forbidden(self, client):
        template = (await client.post(
            "/templates",
            json={"name": "Shared", "category": "c", "template": "x", "is_public": True},
            headers=USER,
        )).json()
        response = await client.put(f"/templates/{template['id']}", json={"name": "Mine"}, headers=OTHER)
        assert response.status_code == 403

    async def test_catalogue_endpoints(self, client, db_session):
        seed_system_templates(db_session)
        assert "crm" in (await client.get("/templates/categories", headers=USER)).json()["categories"]
        assert "seo" in (await client.get("/templates/tags", headers=USER)).json()["tags"]
        popular = (await client.get("/templates/popular", params={"limit": 2}, headers=USER)).json()
        assert len(popular["templates"]) == 2


class TestUsageAPI:
    async def test_record_and_report(self, client, ai_model):
        response = await client.post(
            "/usage",
            json={
                "model_id": ai_model.id,
                "operation_type": "chat",
                "input_tokens": 1000,
                "output_tokens": 500,
                "response_time_ms": 120,
                "status": "success",
            },
            headers=USER,
        )
        assert response.status_code == 201
        assert response.json()["cost"] == pytest.approx(0.005)
        assert response.json()["user_id"] == 1

        stats = (await client.get("/usage/stats", headers=USER)).json()
        assert stats["total_requests"] == 1
        assert stats["total_tokens"] == 1500

        daily = (await client.get("/usage/daily", params={"period": "7 days"}, headers=USER)).json()["daily"]
        assert len(daily) == 7

        costs = (await client.get("/usage/costs", headers=USER)).json()
        assert costs["by_service"] == {"Mistral AI": pytest.approx(0.005)}

    async def test_invalid_status_rejected(self, client, ai_model):
        response = await client.post(
            "/usage",
            json={"model_id": ai_model.id, "operation_type": "chat", "status": "melted"},
            headers=USER,
        )
        assert response.status_code == 422

    async def test_bad_period_is_validation_error(self, client):
        response = await client.get("/usage/stats", params={"period": "soon"}, headers=USER)
        assert response.status_code == 422

    async def test_other_users_usage_requires_admin(self, client):
        response = await client.get("/usage/stats", params={"user_id": 5}, headers=USER)
        assert response.status_code == 403

        response = await client.get("/usage/stats", params={"user_id": 5}, headers=ADMIN)
        assert response.status_code == 200

    async def test_top_users_admin_only(self, client):
        assert (await client.get("/usage/top-users", headers=USER)).status_code == 403
        assert (await client.get("/usage/top-users", headers=ADMIN)).json() == {"users": []}

    async def test_foreign_conversation_and_private_template_are_not_found(self, client, ai_model):
        conversation = (await client.post(
            "/conversations", json={"model_id": ai_model.id, "title": "Mine"}, headers=USER
        )).json()
        template = (await client.post(
            "/templates",
            json={"name": "Private", "category": "c", "template": "{{x}}", "is_public": False},
            headers=USER,
        )).json()
        base = {"model_id": ai_model.id, "operation_type": "chat", "input_tokens": 10000}

        response = await client.post(
            "/usage", json={**base, "conversation_id": conversation["id"]}, headers=OTHER
        )
        assert response.status_code == 404
        response = await client.post(
            "/usage", json={**base, "template_id": template["id"]}, headers=OTHER
        )
        assert response.status_code == 404

        owner_view = (await client.get(f"/conversations/{conversation['id']}", headers=USER)).json()
        assert owner_view["conversation"]["total_tokens"] == 0
        assert (await client.get(f"/templates/{template['id']}", headers=USER)).json()["usage_count"] == 0
        assert (await client.get("/usage/stats", headers=OTHER)).json()["total_requests"] == 0

    async def test_owner_usage_folds_into_conversation(self, client, ai_model):
        conversation = (await client.post(
            "/conversations", json={"model_id": ai_model.id, "title": "Mine"}, headers=USER
        )).json()
        response = await client.post(
            "/usage",
            json={
                "model_id": ai_model.id,
                "operation_type": "chat",
                "input_tokens": 1000,
                "output_tokens": 500,
                "conversation_id": conversation["id"],
            },
            headers=USER,
        )
        assert response.status_code == 201
        owner_view = (await client.get(f"/conversations/{conversation['id']}", headers=USER)).json()
        assert owner_view["conversation"]["total_tokens"] == 1500

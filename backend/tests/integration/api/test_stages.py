"""
Integration tests for the stage API.

HOW: Uses pytest-asyncio with AsyncClient for HTTP testing.
"""

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.project_stage import StageStatus
from app.services.notification_service import MockNotificationSink, NotificationTemplate
from tests.factories import ProjectRequestFactory, ProposalFactory, StageFactory


@pytest_asyncio.fixture
async def stage(db_session: AsyncSession, client_user):
    request = await ProjectRequestFactory.create(db_session, user=client_user)
    proposal = await ProposalFactory.create_accepted(db_session, request)
    return await StageFactory.create(db_session, proposal)


class TestStageProgress:
    @pytest.mark.asyncio
    async def test_progress_then_complete(self, client: AsyncClient, stage, manager_headers, client_headers):
        stage_id = stage.id
        response = await client.post(
            f"/api/stages/{stage_id}/progress",
            headers=manager_headers,
            json={"progress": 40, "completed_tasks": 2},
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "in_progress"

        response = await client.post(
            f"/api/stages/{stage_id}/complete",
            headers=manager_headers,
            json={"note": "Drawings delivered"},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "completed"
        assert data["progress"] == 100
        assert data["completed_at"] is not None
        assert len(MockNotificationSink.sent_of_kind(NotificationTemplate.STAGE_COMPLETED)) == 1

        response = await client.post(
            f"/api/stages/{stage_id}/progress",
            headers=manager_headers,
            json={"progress": 90},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyCompletedError"

        response = await client.get(f"/api/stages/{stage_id}", headers=client_headers)
        assert response.json()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_out_of_range_progress(self, client: AsyncClient, stage, manager_headers):
        response = await client.post(
            f"/api/stages/{stage.id}/progress",
            headers=manager_headers,
            json={"progress": 120},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_client_cannot_report(self, client: AsyncClient, stage, client_headers):
        response = await client.post(
            f"/api/stages/{stage.id}/progress",
            headers=client_headers,
            json={"progress": 10},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_held_stage_can_be_completed(
        self, client: AsyncClient, db_session: AsyncSession, stage, manager_headers
    ):
        response = await client.patch(
            f"/api/stages/{stage.id}", headers=manager_headers, json={"status": "on_hold"}
        )
        assert response.json()["data"]["status"] == StageStatus.ON_HOLD.value

        response = await client.post(f"/api/stages/{stage.id}/complete", headers=manager_headers, json={})
        assert response.status_code == 200
        assert response.json()["data"]["status"] == StageStatus.COMPLETED.value
        assert response.json()["data"]["progress"] == 100

"""
Integration tests for the amendment API.

WHAT: Raising, reviewing, promoting and completing amendments over HTTP.

WHY: The amendment flow spans two proposals; these tests check the
envelopes and the conflict codes clients see when they act out of order.

HOW: Uses pytest-asyncio with AsyncClient for HTTP testing.
"""

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from tests.factories import ProjectRequestFactory, ProposalFactory


@pytest_asyncio.fixture
async def accepted_proposal(db_session: AsyncSession, client_user):
    request = await ProjectRequestFactory.create(db_session, user=client_user)
    return await ProposalFactory.create_accepted(db_session, request)


class TestAmendmentFlow:
    """Amendment request through to its drafted proposal."""

    @pytest.mark.asyncio
    async def test_request_review_and_draft(
        self, client: AsyncClient, accepted_proposal, client_headers, manager_headers
    ):
        response = await client.post(
            "/api/amendments",
            headers=client_headers,
            json={
                "proposal_id": accepted_proposal.id,
                "description": "Add a detached garage",
                "urgency": "high",
                "requested_services": [
                    {"name": "Garage design", "estimated_amount": "8000.00"},
                ],
            },
        )
        assert response.status_code == 201
        amendment = response.json()["data"]
        assert amendment["status"] == "pending"
        assert amendment["requested_services"][0]["name"] == "Garage design"
        amendment_id = amendment["id"]

        response = await client.post(
            f"/api/amendments/{amendment_id}/review",
            headers=manager_headers,
            json={"approve": True, "notes": "Fine"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "approved"

        response = await client.post(
            f"/api/amendments/{amendment_id}/review",
            headers=manager_headers,
            json={"approve": False},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyReviewedError"

        response = await client.post(
            f"/api/amendments/{amendment_id}/proposal",
            headers=manager_headers,
            json={},
        )
        assert response.status_code == 201
        body = response.json()["data"]
        assert body["amendment"]["status"] == "under_review"
        assert body["proposal"]["proposal_type"] == "amendment"
        assert body["proposal"]["parent_proposal_id"] == accepted_proposal.id
        assert body["proposal"]["proposal_number"].endswith("-AMD")
        assert body["proposal"]["subtotal"] == 8000.0

        response = await client.post(
            f"/api/amendments/{amendment_id}/proposal",
            headers=manager_headers,
            json={},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

        response = await client.post(f"/api/amendments/{amendment_id}/complete", headers=manager_headers)
        assert response.status_code == 422
        assert response.json()["error"] == "PrerequisiteNotMetError"


class TestAmendmentErrors:
    """Guards on amendment creation and reads."""

    @pytest.mark.asyncio
    async def test_draft_proposal_conflicts(
        self, client: AsyncClient, db_session: AsyncSession, client_user, client_headers
    ):
        request = await ProjectRequestFactory.create(db_session, user=client_user)
        draft = await ProposalFactory.create(db_session, request)

        response = await client.post(
            "/api/amendments",
            headers=client_headers,
            json={"proposal_id": draft.id, "description": "Bigger kitchen"},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "InvalidStateError"

    @pytest.mark.asyncio
    async def test_listing_is_for_managers(
        self, client: AsyncClient, accepted_proposal, client_headers, manager_headers
    ):
        await client.post(
            "/api/amendments",
            headers=client_headers,
            json={"proposal_id": accepted_proposal.id, "description": "Bigger kitchen"},
        )

        response = await client.get("/api/amendments", headers=client_headers)
        assert response.status_code == 403

        response = await client.get("/api/amendments", headers=manager_headers)
        assert response.json()["total"] == 1

        response = await client.get(
            f"/api/proposals/{accepted_proposal.id}/amendments", headers=client_headers
        )
        assert response.status_code == 200
        assert response.json()["items"][0]["description"] == "Bigger kitchen"

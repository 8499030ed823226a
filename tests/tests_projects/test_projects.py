# tests/tests_projects/test_projects.py
from datetime import timedelta

import pytest
import stripe
from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.database.models import ActivityItem, Donation, Project, ProjectStatus
from src.database.models.base import utcnow
from src.security.auth import create_onboarding_state, decode_onboarding_state


def message_donation(payment_id: str, donor_type: str, donor_id: str, message: str, days_ago: int) -> Donation:
    return Donation(
        project_id="p1",
        donor_type=donor_type,
        donor_id=donor_id,
        amount=1000,
        currency="jpy",
        external_payment_id=payment_id,
        message=message,
        created_at=utcnow() - timedelta(days=days_ago),
    )


class TestProjectChart:
    """График помесячных сумм"""

    @pytest.mark.asyncio
    async def test_empty_chart(self, client, test_project):
        response = await client.get("/projects/p1/chart")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"chart": []}

    @pytest.mark.asyncio
    async def test_chart_points(self, client, db_session: AsyncSession, test_project):
        now = utcnow()
        previous_month = now.replace(day=1) - timedelta(days=1)
        db_session.add_all([
            Donation(project_id="p1", donor_type="token", donor_id="tk", amount=1200, currency="jpy",
                     external_payment_id="pi_1", created_at=previous_month),
            Donation(project_id="p1", donor_type="token", donor_id="tk", amount=800, currency="jpy",
                     external_payment_id="pi_2", created_at=now),
            Donation(project_id="p1", donor_type="token", donor_id="tk", amount=300, currency="jpy",
                     external_payment_id="pi_3", created_at=now),
        ])
        await db_session.commit()

        chart = (await client.get("/projects/p1/chart")).json()["chart"]

        assert [(p["month"], p["actual_amount"]) for p in chart] == [
            (previous_month.strftime("%Y-%m"), 1200),
            (now.strftime("%Y-%m"), 1100),
        ]
        assert all(p["min_amount"] == 3000 and p["target_amount"] == 10_000 for p in chart)

    @pytest.mark.asyncio
    async def test_missing_project(self, client):
        response = await client.get("/projects/nope/chart")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {"error": "project_not_found"}

    @pytest.mark.asyncio
    async def test_deleted_project(self, client, db_session: AsyncSession, test_project):
        test_project.status = ProjectStatus.DELETED.value
        await db_session.commit()

        response = await client.get("/projects/p1/chart")

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestProjectMessages:
    """Сообщения доноров: доступ и фильтры"""

    @pytest.fixture
    async def messages(self, db_session: AsyncSession, test_project, test_user):
        db_session.add_all([
            message_donation("pi_1", "user", "u1", "Thanks for the tool", 3),
            message_donation("pi_2", "token", "tk_abc", "Anonymous cheer", 1),
        ])
        await db_session.commit()

    @pytest.mark.asyncio
    async def test_owner_reads_messages(self, client, login, owner_user, messages):
        login(owner_user)

        response = await client.get("/projects/p1/messages")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 2
        assert [m["donor_name"] for m in data["messages"]] == ["Anonymous", "Taro Donor"]

    @pytest.mark.asyncio
    async def test_sort_and_filter(self, client, login, owner_user, messages):
        login(owner_user)

        response = await client.get("/projects/p1/messages", params={"sort": "asc"})
        assert [m["message"] for m in response.json()["messages"]] == ["Thanks for the tool", "Anonymous cheer"]

        response = await client.get("/projects/p1/messages", params={"donor": "TARO"})
        assert response.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_invalid_sort(self, client, login, owner_user, messages):
        login(owner_user)

        response = await client.get("/projects/p1/messages", params={"sort": "sideways"})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.asyncio
    async def test_other_user_forbidden(self, client, login, other_user, messages):
        login(other_user)

        response = await client.get("/projects/p1/messages")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json() == {"error": "forbidden"}

    @pytest.mark.asyncio
    async def test_host_reads_messages(self, client, login, other_user, messages, monkeypatch):
        monkeypatch.setattr(settings, "HOST_EMAILS", "admin@example.com, Other@Example.com")
        login(other_user)

        response = await client.get("/projects/p1/messages")

        assert response.status_code == status.HTTP_200_OK

    @pytest.mark.asyncio
    async def test_requires_login(self, client, messages):
        response = await client.get("/projects/p1/messages")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestActivityFeeds:
    """Общая лента и лента проекта"""

    @pytest.fixture
    async def feed(self, db_session: AsyncSession, test_project):
        now = utcnow()
        db_session.add_all([
            ActivityItem(type="donation", project_id="p1", project_name="Open Source Tool", amount=100 * i,
                         created_at=now - timedelta(minutes=i))
            for i in range(1, 26)
        ])
        db_session.add(ActivityItem(type="project_created", project_id="p2", project_name="Other", created_at=now))
        await db_session.commit()

    @pytest.mark.asyncio
    async def test_global_default_limit(self, client, feed):
        response = await client.get("/activity")

        assert response.status_code == status.HTTP_200_OK
        items = response.json()["activities"]
        assert len(items) == 10
        assert items[0]["type"] == "project_created"

    @pytest.mark.asyncio
    async def test_global_limit_bounds(self, client, feed):
        assert len((await client.get("/activity", params={"limit": 50})).json()["activities"]) == 26
        assert (await client.get("/activity", params={"limit": 51})).status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.asyncio
    async def test_project_feed(self, client, feed):
        response = await client.get("/projects/p1/activity", params={"limit": 20})

        items = response.json()["activities"]
        assert len(items) == 20
        assert {i["project_id"] for i in items} == {"p1"}
        assert items[0]["amount"] == 100

    @pytest.mark.asyncio
    async def test_project_feed_missing_project(self, client):
        response = await client.get("/projects/nope/activity")

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestPaymentsOnboarding:
    """Подключение выплат владельцем проекта"""

    @pytest.fixture
    async def draft_project(self, db_session: AsyncSession, owner_user) -> Project:
        project = Project(id="p_draft", owner_id=owner_user.id, name="Draft", status=ProjectStatus.DRAFT.value)
        db_session.add(project)
        await db_session.commit()
        return project

    async def callback(self, client, state, code="ac_123"):
        params = {"state": state}
        if code is not None:
            params["code"] = code
        return await client.get("/payments/connect/callback", params=params)

    @pytest.mark.asyncio
    async def test_owner_gets_onboarding_url(self, client, login, owner_user, draft_project, stripe_client):
        login(owner_user)

        response = await client.get("/payments/connect/onboarding", params={"project_id": "p_draft"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["url"].startswith("https://connect.example/")
        state = stripe_client.oauth.authorize_url.call_args.kwargs["params"]["state"]
        assert decode_onboarding_state(state) == ("p_draft", owner_user.id)

    @pytest.mark.asyncio
    async def test_non_owner_forbidden(self, client, login, other_user, draft_project):
        login(other_user)

        response = await client.get("/payments/connect/onboarding", params={"project_id": "p_draft"})

        assert response.status_code == status.HTTP_403_FORBIDDEN

    @pytest.mark.asyncio
    async def test_callback_activates_draft(self, client, db_session: AsyncSession, owner_user, draft_project):
        response = await self.callback(client, create_onboarding_state("p_draft", owner_user.id))

        assert response.status_code == status.HTTP_302_FOUND
        assert response.headers["location"].endswith("/projects/p_draft?stripe_connected=1")
        await db_session.refresh(draft_project)
        assert draft_project.external_account_id == "acct_new"
        assert draft_project.status == ProjectStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_callback_without_code(self, client, owner_user, draft_project):
        response = await self.callback(client, create_onboarding_state("p_draft", owner_user.id), code=None)

        assert response.status_code == status.HTTP_302_FOUND
        assert response.headers["location"].endswith("/projects/p_draft?stripe_error=1")

    @pytest.mark.asyncio
    async def test_callback_provider_rejects_code(
            self, client, db_session: AsyncSession, owner_user, draft_project, stripe_client
    ):
        stripe_client.oauth.token.side_effect = stripe.InvalidRequestError("invalid grant", param="code")

        response = await self.callback(client, create_onboarding_state("p_draft", owner_user.id), code="ac_bad")

        assert response.headers["location"].endswith("/projects/p_draft?stripe_error=1")
        await db_session.refresh(draft_project)
        assert draft_project.external_account_id is None
        assert draft_project.status == ProjectStatus.DRAFT.value

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", [
        "p1",
        "",
        "eyJhbGciOiJIUzI1NiJ9.eyJwcm9qZWN0X2lkIjoicDEifQ.forged",
    ])
    async def test_callback_rejects_unsigned_state(
            self, client, db_session: AsyncSession, test_project, stripe_client, state
    ):
        response = await self.callback(client, state, code="attacker_code")

        assert response.status_code == status.HTTP_302_FOUND
        assert response.headers["location"].endswith("/?stripe_error=1")
        stripe_client.oauth.token.assert_not_called()
        await db_session.refresh(test_project)
        assert test_project.external_account_id == "acct_1"

    @pytest.mark.asyncio
    async def test_callback_rejects_expired_state(self, client, db_session: AsyncSession, owner_user, draft_project):
        state = create_onboarding_state("p_draft", owner_user.id, expires_delta=timedelta(minutes=-1))

        response = await self.callback(client, state)

        assert response.headers["location"].endswith("/?stripe_error=1")
        await db_session.refresh(draft_project)
        assert draft_project.external_account_id is None

    @pytest.mark.asyncio
    async def test_callback_state_for_other_owner(
            self, client, db_session: AsyncSession, other_user, draft_project, stripe_client
    ):
        response = await self.callback(client, create_onboarding_state("p_draft", other_user.id))

        assert response.headers["location"].endswith("/projects/p_draft?stripe_error=1")
        stripe_client.oauth.token.assert_not_called()
        await db_session.refresh(draft_project)
        assert draft_project.external_account_id is None

    @pytest.mark.asyncio
    async def test_connected_account_is_not_replaced(
            self, client, db_session: AsyncSession, owner_user, test_project, stripe_client
    ):
        response = await self.callback(client, create_onboarding_state("p1", owner_user.id))

        assert response.headers["location"].endswith("/projects/p1?stripe_error=1")
        stripe_client.oauth.token.assert_not_called()
        await db_session.refresh(test_project)
        assert test_project.external_account_id == "acct_1"

    @pytest.mark.asyncio
    async def test_state_is_not_a_session_token(self, client, owner_user, test_project):
        state = create_onboarding_state("p1", owner_user.id)

        response = await client.get(
            "/projects/p1/messages", headers={"Authorization": f"Bearer {state}"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

# tests/tests_payments/test_donation_endpoints.py
from datetime import timedelta

import pytest
import stripe
from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.models import Donation, DonationStatus, TokenMigration
from src.database.models.base import utcnow


def make_donation(donation_id: str, donor_type: str = "user", donor_id: str = "u1", **fields) -> Donation:
    values = dict(
        id=donation_id,
        project_id="p1",
        donor_type=donor_type,
        donor_id=donor_id,
        amount=1000,
        currency="jpy",
        is_recurring=False,
        external_payment_id=f"pi_{donation_id}",
        status=DonationStatus.COMPLETED.value,
    )
    values.update(fields)
    return Donation(**values)


def make_subscription(donation_id: str, **fields) -> Donation:
    return make_donation(
        donation_id,
        is_recurring=True,
        external_payment_id=f"sub_{donation_id}",
        status=DonationStatus.ACTIVE.value,
        **fields
    )


class TestMyDonations:
    """Донаты текущего пользователя"""

    @pytest.mark.asyncio
    async def test_list_newest_first(self, client, login, db_session: AsyncSession, test_project, test_user):
        now = utcnow()
        db_session.add_all([
            make_donation("d_old", created_at=now - timedelta(days=40)),
            make_donation("d_new", created_at=now),
            make_donation("d_deleted", deleted=True),
            make_donation("d_foreign", donor_id="u2"),
        ])
        await db_session.commit()
        login(test_user)

        response = await client.get("/me/donations")

        assert response.status_code == status.HTTP_200_OK
        assert [d["id"] for d in response.json()["donations"]] == ["d_new", "d_old"]

    @pytest.mark.asyncio
    async def test_requires_login(self, client, test_project):
        response = await client.get("/me/donations")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_patch_foreign_donation_forbidden(
            self, client, login, db_session: AsyncSession, test_project, test_user, other_user
    ):
        db_session.add(make_donation("d1", donor_id=test_user.id))
        await db_session.commit()
        login(other_user)

        response = await client.patch("/me/donations/d1", json={"amount": 2000})

        assert response.status_code == status.HTTP_403_FORBIDDEN
        donation = await db_session.get(Donation, "d1")
        await db_session.refresh(donation)
        assert donation.amount == 1000

    @pytest.mark.asyncio
    async def test_patch_missing_donation(self, client, login, test_project, test_user):
        login(test_user)

        response = await client.patch("/me/donations/nope", json={"amount": 2000})

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.asyncio
    async def test_patch_amount(self, client, login, db_session: AsyncSession, test_project, test_user, stripe_client):
        db_session.add(make_subscription("d1"))
        await db_session.commit()
        login(test_user)

        response = await client.patch("/me/donations/d1", json={"amount": 2000})

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"ok": True}
        assert (await db_session.get(Donation, "d1")).amount == 2000
        stripe_client.subscriptions.update_async.assert_not_called()

    @pytest.mark.asyncio
    async def test_pause_non_recurring_rejected(self, client, login, db_session: AsyncSession, test_project, test_user):
        db_session.add(make_donation("d1"))
        await db_session.commit()
        login(test_user)

        response = await client.patch("/me/donations/d1", json={"paused": True})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.asyncio
    async def test_pause_and_resume_subscription(
            self, client, login, db_session: AsyncSession, test_project, test_user, stripe_client
    ):
        db_session.add(make_subscription("d1"))
        await db_session.commit()
        login(test_user)

        response = await client.patch("/me/donations/d1", json={"paused": True})
        assert response.status_code == status.HTTP_200_OK
        donation = await db_session.get(Donation, "d1")
        assert donation.paused is True
        assert donation.status == DonationStatus.PAUSED.value
        assert stripe_client.subscriptions.update_async.call_args.args == ("sub_d1",)

        response = await client.patch("/me/donations/d1", json={"paused": False})
        assert response.status_code == status.HTTP_200_OK
        donation = await db_session.get(Donation, "d1")
        assert donation.paused is False
        assert donation.status == DonationStatus.ACTIVE.value
        assert stripe_client.subscriptions.update_async.call_count == 2

    @pytest.mark.asyncio
    async def test_pause_provider_failure_keeps_state(
            self, client, login, db_session: AsyncSession, test_project, test_user, stripe_client
    ):
        stripe_client.subscriptions.update_async.side_effect = stripe.APIConnectionError("down")
        db_session.add(make_subscription("d1"))
        await db_session.commit()
        login(test_user)

        response = await client.patch("/me/donations/d1", json={"paused": True})

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        donation = await db_session.get(Donation, "d1")
        await db_session.refresh(donation)
        assert donation.paused is False
        assert donation.status == DonationStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_delete_one_off(self, client, login, db_session: AsyncSession, test_project, test_user, stripe_client):
        db_session.add(make_donation("d1"))
        await db_session.commit()
        login(test_user)

        response = await client.delete("/me/donations/d1")

        assert response.status_code == status.HTTP_200_OK
        assert (await db_session.get(Donation, "d1")).deleted is True
        stripe_client.subscriptions.cancel_async.assert_not_called()
        assert (await client.get("/me/donations")).json()["donations"] == []

    @pytest.mark.asyncio
    async def test_delete_subscription_cancels_at_provider(
            self, client, login, db_session: AsyncSession, test_project, test_user, stripe_client
    ):
        db_session.add(make_subscription("d1"))
        await db_session.commit()
        login(test_user)

        response = await client.delete("/me/donations/d1")

        assert response.status_code == status.HTTP_200_OK
        stripe_client.subscriptions.cancel_async.assert_awaited_once()
        donation = await db_session.get(Donation, "d1")
        assert donation.deleted is True
        assert donation.status == DonationStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_delete_foreign_donation(self, client, login, db_session: AsyncSession, test_project, other_user):
        db_session.add(make_donation("d1", donor_id="u1"))
        await db_session.commit()
        login(other_user)

        response = await client.delete("/me/donations/d1")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        donation = await db_session.get(Donation, "d1")
        await db_session.refresh(donation)
        assert donation.deleted is False


class TestTokenMigration:
    """Перенос анонимных донатов на пользователя"""

    @pytest.mark.asyncio
    async def test_migrate_twice(self, client, login, db_session: AsyncSession, test_project, test_user):
        db_session.add_all([
            make_donation("d1", donor_type="token", donor_id="tk_xyz"),
            make_donation("d2", donor_type="token", donor_id="tk_xyz"),
            make_donation("d3", donor_type="token", donor_id="tk_other"),
        ])
        await db_session.commit()
        login(test_user)
        cookie = {"Cookie": "donor_token=tk_xyz"}

        response = await client.post("/me/migrate-from-token", headers=cookie)
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"migrated_count": 2, "already_migrated": False}

        response = await client.post("/me/migrate-from-token", headers=cookie)
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"migrated_count": 0, "already_migrated": True}

        response = await client.get("/me/donations")
        assert sorted(d["id"] for d in response.json()["donations"]) == ["d1", "d2"]

        audit = (await db_session.execute(select(TokenMigration))).scalar_one()
        assert audit.user_id == test_user.id
        assert audit.migrated_count == 2
        assert "tk_xyz" not in audit.token_hash

    @pytest.mark.asyncio
    async def test_unknown_token(self, client, login, test_project, test_user):
        login(test_user)

        response = await client.post("/me/migrate-from-token", headers={"Cookie": "donor_token=tk_never_used"})

        assert response.json() == {"migrated_count": 0, "already_migrated": False}

    @pytest.mark.asyncio
    async def test_missing_cookie(self, client, login, test_project, test_user):
        login(test_user)

        response = await client.post("/me/migrate-from-token")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "donor_token_missing"}

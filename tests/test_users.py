"""
Tests for user endpoints

Tests cover:
1. Registration
2. Staff views (cashier limited, manager full) and listing
3. Manager / superuser edits
4. Self service: profile, avatar, password, own transactions, transfers
"""

from datetime import timedelta
from decimal import Decimal

from loyalty.models.promotion import PromotionType
from loyalty.models.user import Role, User
from loyalty.services import transactions as tx_service
from loyalty.utils.dates import utc_now
from loyalty.utils.media import local_path


class TestRegister:

    def test_cashier_registers_user(self, client, make_user, headers):
        cashier = make_user("cashier1", role=Role.CASHIER)
        resp = client.post(
            "/users",
            json={"utorid": "newuser1", "name": "New User", "email": "newuser1@mail.utoronto.ca"},
            headers=headers(cashier),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["verified"] is False
        assert body["resetToken"]
        assert body["expiresAt"]

    def test_duplicate_utorid_conflicts(self, client, make_user, headers):
        cashier = make_user("cashier1", role=Role.CASHIER)
        resp = client.post(
            "/users",
            json={"utorid": "cashier1", "name": "Dup", "email": "other001@mail.utoronto.ca"},
            headers=headers(cashier),
        )
        assert resp.status_code == 409

    def test_invalid_fields(self, client, make_user, headers):
        cashier = make_user("cashier1", role=Role.CASHIER)
        bad_utorid = client.post(
            "/users",
            json={"utorid": "short", "name": "x", "email": "short@mail.utoronto.ca"},
            headers=headers(cashier),
        )
        bad_email = client.post(
            "/users",
            json={"utorid": "newuser1", "name": "x", "email": "newuser1@gmail.com"},
            headers=headers(cashier),
        )
        assert bad_utorid.status_code == 400
        assert bad_email.status_code == 400

    def test_regular_user_cannot_register(self, client, make_user, headers):
        student = make_user("student1")
        resp = client.post(
            "/users",
            json={"utorid": "newuser1", "name": "x", "email": "newuser1@mail.utoronto.ca"},
            headers=headers(student),
        )
        assert resp.status_code == 403

    def test_created_at_is_naive_utc(self, client, db, make_user, headers):
        cashier = make_user("cashier1", role=Role.CASHIER)
        before = utc_now()
        resp = client.post(
            "/users",
            json={"utorid": "newuser1", "name": "New User", "email": "newuser1@mail.utoronto.ca"},
            headers=headers(cashier),
        )
        user = db.get(User, resp.json()["id"])
        assert user.created_at.tzinfo is None
        assert before - timedelta(seconds=1) <= user.created_at <= utc_now() + timedelta(seconds=1)


class TestStaffViews:

    def test_cashier_gets_limited_view_with_promotions(self, client, make_user, make_promotion, headers):
        cashier = make_user("cashier1", role=Role.CASHIER)
        student = make_user("student1", points=12)
        promo = make_promotion("welcome", type=PromotionType.ONE_TIME, points=10)

        resp = client.get(f"/users/{student.id}", headers=headers(cashier))
        assert resp.status_code == 200
        body = resp.json()
        assert body["points"] == 12
        assert "email" not in body
        assert [p["id"] for p in body["promotions"]] == [promo.id]

    def test_manager_gets_full_profile(self, client, make_user, headers):
        manager = make_user("manager1", role=Role.MANAGER)
        student = make_user("student1")
        body = client.get(f"/users/{student.id}", headers=headers(manager)).json()
        assert body["email"] == "student1@mail.utoronto.ca"
        assert body["role"] == "REGULAR"
        assert "createdAt" in body

    def test_list_filters(self, client, make_user, headers):
        manager = make_user("manager1", role=Role.MANAGER)
        make_user("cashier1", role=Role.CASHIER)
        make_user("student1", verified=False)

        all_users = client.get("/users", headers=headers(manager)).json()
        assert all_users["count"] == 3

        cashiers = client.get("/users?role=cashier", headers=headers(manager)).json()
        assert [u["utorid"] for u in cashiers["results"]] == ["cashier1"]

        unverified = client.get("/users?verified=false", headers=headers(manager)).json()
        assert [u["utorid"] for u in unverified["results"]] == ["student1"]

        paged = client.get("/users?page=2&limit=2", headers=headers(manager)).json()
        assert paged["count"] == 3
        assert len(paged["results"]) == 1


class TestStaffEdits:

    def test_manager_verifies_and_promotes_to_cashier(self, client, make_user, headers):
        manager = make_user("manager1", role=Role.MANAGER)
        student = make_user("student1", verified=False)

        resp = client.patch(
            f"/users/{student.id}",
            json={"verified": True, "role": "cashier"},
            headers=headers(manager),
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "id": student.id,
            "utorid": "student1",
            "name": "Student1",
            "verified": True,
            "role": "CASHIER",
        }

    def test_manager_cannot_make_managers(self, client, make_user, headers):
        manager = make_user("manager1", role=Role.MANAGER)
        student = make_user("student1")
        resp = client.patch(f"/users/{student.id}", json={"role": "manager"}, headers=headers(manager))
        assert resp.status_code == 400

    def test_superuser_can_make_managers(self, client, make_user, headers):
        root = make_user("superus1", role=Role.SUPERUSER)
        student = make_user("student1")
        resp = client.patch(f"/users/{student.id}", json={"role": "manager"}, headers=headers(root))
        assert resp.status_code == 200
        assert resp.json()["role"] == "MANAGER"

    def test_verified_only_goes_true(self, client, make_user, headers):
        manager = make_user("manager1", role=Role.MANAGER)
        student = make_user("student1")
        resp = client.patch(f"/users/{student.id}", json={"verified": False}, headers=headers(manager))
        assert resp.status_code == 400


class TestSelfService:

    def test_update_me(self, client, make_user, headers):
        student = make_user("student1")
        resp = client.patch(
            "/users/me",
            json={"name": "Real Name", "birthday": "2001-02-03"},
            headers=headers(student),
        )
        assert resp.status_code == 200
        assert resp.json()["name"] == "Real Name"
        assert resp.json()["birthday"] == "2001-02-03"

    def test_update_me_rejects_foreign_email(self, client, make_user, headers):
        student = make_user("student1")
        resp = client.patch("/users/me", json={"email": "me@example.com"}, headers=headers(student))
        assert resp.status_code == 400

    def test_change_password(self, client, make_user, headers):
        student = make_user("student1")
        wrong = client.patch(
            "/users/me/password",
            json={"old": "Wrong0ne!", "new": "Better1!"},
            headers=headers(student),
        )
        assert wrong.status_code == 401

        ok = client.patch(
            "/users/me/password",
            json={"old": "Passw0rd!", "new": "Better1!"},
            headers=headers(student),
        )
        assert ok.status_code == 200
        login = client.post("/auth/tokens", json={"utorid": "student1", "password": "Better1!"})
        assert login.status_code == 200

    def test_transfer_and_own_history(self, client, make_user, headers):
        alice = make_user("alice001", points=100)
        bob = make_user("bob00001")

        resp = client.post(
            f"/users/{bob.id}/transactions",
            json={"type": "transfer", "amount": 30, "remark": "lunch"},
            headers=headers(alice),
        )
        assert resp.status_code == 201
        tx = resp.json()
        assert tx["sender"] == "alice001"
        assert tx["recipient"] == "bob00001"
        assert tx["amount"] == 30

        assert client.get("/users/me", headers=headers(alice)).json()["points"] == 70
        assert client.get("/users/me", headers=headers(bob)).json()["points"] == 30

        for who in (alice, bob):
            history = client.get("/users/me/transactions?type=transfer", headers=headers(who)).json()
            assert history["count"] == 1
            assert history["results"][0]["id"] == tx["id"]

    def test_self_transfer_is_400(self, client, make_user, headers):
        alice = make_user("alice001", points=100)
        resp = client.post(
            f"/users/{alice.id}/transactions",
            json={"type": "transfer", "amount": 5},
            headers=headers(alice),
        )
        assert resp.status_code == 400

    def test_redemption_via_api(self, client, make_user, headers):
        student = make_user("student1", points=100)
        cashier = make_user("cashier1", role=Role.CASHIER)

        filed = client.post(
            "/users/me/transactions",
            json={"type": "redemption", "amount": 50},
            headers=headers(student),
        )
        assert filed.status_code == 201
        tx_id = filed.json()["id"]
        assert filed.json()["processedBy"] is None

        first = client.patch(f"/transactions/{tx_id}/processed", json={"processed": True}, headers=headers(cashier))
        assert first.status_code == 200
        assert first.json()["processedBy"] == "cashier1"

        second = client.patch(f"/transactions/{tx_id}/processed", json={"processed": True}, headers=headers(cashier))
        assert second.status_code == 409
        assert client.get("/users/me", headers=headers(student)).json()["points"] == 50

    def test_me_lists_unused_one_time_promotions(self, client, db, make_user, make_promotion, headers, identity):
        student = make_user("student1")
        cashier = make_user("cashier1", role=Role.CASHIER)
        promo = make_promotion("welcome", type=PromotionType.ONE_TIME, points=10)

        assert [p["id"] for p in client.get("/users/me", headers=headers(student)).json()["promotions"]] == [promo.id]

        tx_service.create_purchase(
            db, identity(cashier), utorid="student1", spent=Decimal("2"), promotion_ids=[promo.id],
        )
        assert client.get("/users/me", headers=headers(student)).json()["promotions"] == []

    def test_avatar_upload_replaces_previous_file(self, client, make_user, headers):
        student = make_user("student1")
        png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64

        first = client.patch(
            "/users/me/avatar",
            files={"avatar": ("me.png", png, "image/png")},
            headers=headers(student),
        )
        assert first.status_code == 200
        first_url = first.json()["avatarUrl"]
        assert first_url.startswith("/media/avatars/") and first_url.endswith(".png")
        assert client.get(first_url).content == png

        second = client.patch(
            "/users/me/avatar",
            files={"avatar": ("me.png", png, "image/png")},
            headers=headers(student),
        )
        assert second.status_code == 200
        assert second.json()["avatarUrl"] != first_url
        assert not local_path(first_url).exists()
        assert client.get("/users/me", headers=headers(student)).json()["avatarUrl"] == second.json()["avatarUrl"]

    def test_avatar_must_be_an_image(self, client, make_user, headers):
        student = make_user("student1")
        resp = client.patch(
            "/users/me/avatar",
            files={"avatar": ("cv.pdf", b"%PDF-1.7 not an image", "application/pdf")},
            headers=headers(student),
        )
        assert resp.status_code == 415
        assert client.get("/users/me", headers=headers(student)).json()["avatarUrl"] is None


class TestTransactionsApi:

    def test_purchase_by_cashier_and_manager_reads(self, client, make_user, headers):
        cashier = make_user("cashier1", role=Role.CASHIER)
        manager = make_user("manager1", role=Role.MANAGER)
        make_user("student1")

        created = client.post(
            "/transactions",
            json={"type": "purchase", "utorid": "student1", "spent": 10.5},
            headers=headers(cashier),
        )
        assert created.status_code == 201
        body = created.json()
        assert body["earned"] == 42
        assert body["spent"] == 10.5
        assert body["createdBy"] == "cashier1"

        listed = client.get("/transactions?type=purchase", headers=headers(manager)).json()
        assert listed["count"] == 1

        flagged = client.patch(
            f"/transactions/{body['id']}/suspicious",
            json={"suspicious": True},
            headers=headers(manager),
        )
        assert flagged.status_code == 200
        assert flagged.json()["suspicious"] is True

    def test_cashier_cannot_adjust(self, client, make_user, headers):
        cashier = make_user("cashier1", role=Role.CASHIER)
        make_user("student1")
        resp = client.post(
            "/transactions",
            json={"type": "adjustment", "utorid": "student1", "amount": 5, "relatedId": 1},
            headers=headers(cashier),
        )
        assert resp.status_code == 403

    def test_related_id_without_type_is_400(self, client, make_user, headers):
        manager = make_user("manager1", role=Role.MANAGER)
        assert client.get("/transactions?relatedId=1", headers=headers(manager)).status_code == 400

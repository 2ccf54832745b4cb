"""
HTTP-level tests for the cart routes and the login-time merge.

These run the real routers, services and an in-memory SQLite database; the guest
cookie travels in the TestClient cookie jar the way it would in a browser.
"""
import logging

from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from app.core.config import settings
from app.services.cart import CartService
from app.services.cart_identity import CartOwner

CART_URL = "/api/v1/cart"
COOKIE = settings.GUEST_SESSION_COOKIE


class TestGuestCart:
    def test_first_request_sets_guest_cookie(self, client, variants):
        response = client.get(CART_URL)

        assert response.status_code == 200
        assert response.json() == []
        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith(f"{COOKIE}=")
        assert "HttpOnly" in set_cookie
        assert client.cookies.get(COOKIE)

    def test_cookie_is_not_reissued(self, client, variants):
        client.get(CART_URL)
        token = client.cookies.get(COOKIE)

        response = client.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"]})

        assert response.status_code == 200
        assert "set-cookie" not in response.headers
        assert client.cookies.get(COOKIE) == token

    def test_add_defaults_to_quantity_one(self, client, variants):
        response = client.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"]})

        body = response.json()
        assert body["success"] is True
        assert isinstance(body["cart_item_id"], int)
        lines = client.get(CART_URL).json()
        assert lines == [
            {
                "cart_item_id": body["cart_item_id"],
                "product_variant_id": variants["TEE-BLK-M"],
                "quantity": 1,
                "price": 24.0,
                "product_title": "Classic Cotton Tee",
            }
        ]

    def test_update_and_delete(self, client, variants):
        line_id = client.post(CART_URL, json={"product_variant_id": variants["TOTE-NAT"], "quantity": 2}).json()["cart_item_id"]

        response = client.patch(CART_URL, json={"cart_item_id": line_id, "quantity": 4})
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert client.get(CART_URL).json()[0]["quantity"] == 4

        response = client.delete(CART_URL, params={"cart_item_id": line_id})
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert client.get(CART_URL).json() == []

    def test_summary_and_clear(self, client, variants):
        client.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"], "quantity": 2})
        client.post(CART_URL, json={"product_variant_id": variants["TOTE-NAT"]})

        summary = client.get(f"{CART_URL}/summary").json()
        assert summary == {"item_count": 3, "line_count": 2, "total": 66.5}

        response = client.delete(f"{CART_URL}/clear")
        assert response.json() == {"success": True, "removed": 2}
        assert client.get(CART_URL).json() == []


class TestValidation:
    def test_missing_variant_is_bad_request(self, client, variants):
        response = client.post(CART_URL, json={"quantity": 1})
        assert response.status_code == 400
        assert "product_variant_id" in response.json()["detail"]

    def test_zero_quantity_add_is_bad_request(self, client, variants):
        response = client.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"], "quantity": 0})
        assert response.status_code == 400

    def test_unavailable_variant_is_bad_request(self, client, inactive_variant):
        response = client.post(CART_URL, json={"product_variant_id": inactive_variant})
        assert response.status_code == 400

    def test_zero_quantity_update_is_rejected_and_line_kept(self, client, variants):
        line_id = client.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"], "quantity": 2}).json()["cart_item_id"]

        response = client.patch(CART_URL, json={"cart_item_id": line_id, "quantity": 0})

        assert response.status_code == 400
        assert client.get(CART_URL).json()[0]["quantity"] == 2

    def test_update_without_line_id_is_bad_request(self, client):
        response = client.patch(CART_URL, json={"quantity": 3})
        assert response.status_code == 400

    def test_delete_without_valid_id_is_bad_request(self, client):
        assert client.delete(CART_URL).status_code == 400
        assert client.delete(CART_URL, params={"cart_item_id": "abc"}).status_code == 400
        assert client.delete(CART_URL, params={"cart_item_id": 0}).status_code == 400

    def test_unknown_line_is_not_found(self, client):
        assert client.patch(CART_URL, json={"cart_item_id": 999, "quantity": 1}).status_code == 404
        assert client.delete(CART_URL, params={"cart_item_id": 999}).status_code == 404

    def test_oversized_quantities_are_bad_request(self, client, variants):
        variant_id = variants["TEE-BLK-M"]
        assert client.post(CART_URL, json={"product_variant_id": variant_id, "quantity": 10**20}).status_code == 400
        assert client.post(CART_URL, json={"product_variant_id": variant_id, "quantity": settings.MAX_LINE_QUANTITY + 1}).status_code == 400

        line_id = client.post(CART_URL, json={"product_variant_id": variant_id, "quantity": 2}).json()["cart_item_id"]
        response = client.patch(CART_URL, json={"cart_item_id": line_id, "quantity": settings.MAX_LINE_QUANTITY + 1})

        assert response.status_code == 400
        assert client.get(CART_URL).json()[0]["quantity"] == 2

    def test_add_past_line_cap_is_rejected_and_cart_stays_readable(self, client, variants):
        variant_id = variants["TEE-BLK-M"]
        first = client.post(CART_URL, json={"product_variant_id": variant_id, "quantity": settings.MAX_LINE_QUANTITY})
        assert first.status_code == 200

        second = client.post(CART_URL, json={"product_variant_id": variant_id, "quantity": 1})
        assert second.status_code == 400

        response = client.get(CART_URL)
        assert response.status_code == 200
        assert response.json()[0]["quantity"] == settings.MAX_LINE_QUANTITY
        assert client.get(f"{CART_URL}/summary").status_code == 200


class TestOwnershipIsolation:
    def test_guest_cannot_touch_another_guests_line(self, make_client, variants):
        alice, mallory = make_client(), make_client()
        line_id = alice.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"], "quantity": 2}).json()["cart_item_id"]

        assert mallory.get(CART_URL).json() == []
        assert mallory.patch(CART_URL, json={"cart_item_id": line_id, "quantity": 50}).status_code == 404
        assert mallory.delete(CART_URL, params={"cart_item_id": line_id}).status_code == 404

        assert alice.get(CART_URL).json()[0]["quantity"] == 2

    def test_user_cannot_touch_another_users_line(self, make_client, variants, user, other_user, login):
        owner_client, other_client = make_client(), make_client()
        owner_headers = login(owner_client)
        other_headers = login(other_client, email=other_user.email)
        line_id = owner_client.post(
            CART_URL, json={"product_variant_id": variants["TOTE-NAT"]}, headers=owner_headers
        ).json()["cart_item_id"]

        response = other_client.delete(CART_URL, params={"cart_item_id": line_id}, headers=other_headers)

        assert response.status_code == 404
        assert len(owner_client.get(CART_URL, headers=owner_headers).json()) == 1

    def test_plain_user_id_header_is_ignored(self, make_client, variants, user, session):
        client = make_client()
        client.post(CART_URL, json={"product_variant_id": variants["TOTE-NAT"]}, headers={"x-user-id": str(user.id)})

        assert CartService(session).list_items(CartOwner.for_user(user.id)) == []

    def test_invalid_bearer_token_falls_back_to_guest_cart(self, client, variants):
        headers = {"Authorization": "Bearer not-a-real-token"}

        response = client.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"]}, headers=headers)
        assert response.status_code == 200
        assert client.cookies.get(COOKIE)

        lines = client.get(CART_URL, headers=headers).json()
        assert [line["product_variant_id"] for line in lines] == [variants["TEE-BLK-M"]]


class TestLoginMerge:
    def test_guest_cart_follows_user_through_login(self, client, variants, user, session, login):
        # anonymous shopper adds the same SKU twice
        client.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"], "quantity": 1})
        client.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"], "quantity": 1})
        guest_token = client.cookies.get(COOKIE)
        lines = client.get(CART_URL).json()
        assert [(l["product_variant_id"], l["quantity"]) for l in lines] == [(variants["TEE-BLK-M"], 2)]

        headers = login(client)

        assert client.cookies.get(COOKIE) is None
        lines = client.get(CART_URL, headers=headers).json()
        assert [(l["product_variant_id"], l["quantity"]) for l in lines] == [(variants["TEE-BLK-M"], 2)]
        assert CartService(session).list_items(CartOwner.for_guest(guest_token)) == []

    def test_login_merges_into_existing_user_cart(self, make_client, variants, user, login):
        device = make_client()
        headers = login(device)
        device.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"], "quantity": 3}, headers=headers)

        browser = make_client()
        browser.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"], "quantity": 2})
        browser.post(CART_URL, json={"product_variant_id": variants["TOTE-NAT"]})
        login(browser)

        quantities = {l["product_variant_id"]: l["quantity"] for l in device.get(CART_URL, headers=headers).json()}
        assert quantities == {variants["TEE-BLK-M"]: 5, variants["TOTE-NAT"]: 1}

    def test_login_without_guest_cookie_leaves_cookies_alone(self, client, user):
        response = client.post("/api/v1/auth/token", data={"username": user.email, "password": "SecurePassword123!"})

        assert response.status_code == 200
        assert "set-cookie" not in response.headers

    def test_failed_merge_fails_login_and_keeps_cookie(self, client, variants, user, monkeypatch):
        client.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"]})
        token = client.cookies.get(COOKIE)

        def explode(self, session_id):
            raise RuntimeError("connection lost")

        monkeypatch.setattr(CartService, "_retire_guest_lines", explode)

        response = client.post("/api/v1/auth/token", data={"username": user.email, "password": "SecurePassword123!"})

        assert response.status_code == 500
        assert client.cookies.get(COOKIE) == token
        assert len(client.get(CART_URL).json()) == 1

    def test_bad_credentials_do_not_merge(self, client, variants, user):
        client.post(CART_URL, json={"product_variant_id": variants["TEE-BLK-M"]})

        response = client.post("/api/v1/auth/token", data={"username": user.email, "password": "wrong"})

        assert response.status_code == 401
        assert len(client.get(CART_URL).json()) == 1


class TestStoreFailure:
    def test_store_error_is_500_and_logged_once(self, client, monkeypatch, caplog):
        def broken_exec(self, statement, *args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(Session, "exec", broken_exec)

        with caplog.at_level(logging.ERROR, logger="app"):
            response = client.get(CART_URL)

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to fetch cart"
        assert len([r for r in caplog.records if r.levelno >= logging.ERROR]) == 1

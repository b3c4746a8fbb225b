"""HTTP surface tests, run against a SQLite file through FastAPI's TestClient."""

import re

import jwt
import pytest
from fastapi.testclient import TestClient

import pizza_service.api.server as server
from pizza_service.api.server import create_app
from pizza_service.factory.client import FactoryError


JWT_PATTERN = re.compile(r"^[a-zA-Z0-9\-_]+\.[a-zA-Z0-9\-_]+\.[a-zA-Z0-9\-_]+$")


@pytest.fixture
def client(cfg):
    with TestClient(create_app(cfg)) as c:
        yield c


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def _register(client, name="pizza diner", email="d@test.com", password="a"):
    r = client.post("/api/auth", json={"name": name, "email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()


def _login(client, email, password):
    r = client.put("/api/auth", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()


@pytest.fixture
def diner_session(client):
    return _register(client)


@pytest.fixture
def admin_session(client):
    return _login(client, "a@jwt.com", "admin")


def test_welcome(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["message"] == "welcome to JWT Pizza"


class TestAuth:
    def test_register(self, client):
        body = _register(client)

        assert JWT_PATTERN.match(body["token"])
        assert body["user"]["name"] == "pizza diner"
        assert body["user"]["email"] == "d@test.com"
        assert body["user"]["roles"] == [{"role": "diner"}]
        assert "password" not in body["user"]

    def test_register_requires_all_fields(self, client):
        r = client.post("/api/auth", json={"name": "x", "email": "x@test.com"})

        assert r.status_code == 400
        assert r.json() == {"message": "name, email, and password are required"}

    def test_register_duplicate_email(self, client, diner_session):
        r = client.post("/api/auth", json={"name": "again", "email": "d@test.com", "password": "b"})
        assert r.status_code == 409

    def test_login(self, client, admin_session):
        assert JWT_PATTERN.match(admin_session["token"])
        assert admin_session["user"]["email"] == "a@jwt.com"
        assert admin_session["user"]["roles"] == [{"role": "admin"}]
        assert "password" not in admin_session["user"]

    def test_login_bad_password(self, client):
        r = client.put("/api/auth", json={"email": "a@jwt.com", "password": "wrong"})

        assert r.status_code == 401
        assert r.headers["www-authenticate"] == "Bearer"

    def test_logout_revokes_token(self, client, diner_session):
        headers = _bearer(diner_session["token"])

        r = client.delete("/api/auth", headers=headers)
        assert r.status_code == 200
        assert r.json() == {"message": "logout successful"}

        r = client.get("/api/user/me", headers=headers)
        assert r.status_code == 401
        assert r.json() == {"message": "unauthorized"}

    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "InvalidFormat"}, {"Authorization": "Bearer invalid-token"}],
        ids=["missing", "no-scheme", "unknown-token"],
    )
    def test_bad_authorization_header(self, client, headers):
        r = client.get("/api/user/me", headers=headers)

        assert r.status_code == 401
        assert r.json() == {"message": "unauthorized"}

    def test_stored_signature_with_wrong_secret(self, client, diner_session):
        forged = jwt.encode(
            {"id": diner_session["user"]["id"], "name": "x", "email": "d@test.com", "roles": [{"role": "admin"}]},
            "some-other-secret-that-is-long-enough",
            algorithm="HS256",
        )
        client.app.state.repo.login_user(diner_session["user"]["id"], forged)

        r = client.get("/api/user/me", headers=_bearer(forged))
        assert r.status_code == 401


class TestUsers:
    def test_me(self, client, diner_session):
        r = client.get("/api/user/me", headers=_bearer(diner_session["token"]))

        assert r.status_code == 200
        assert r.json() == diner_session["user"]

    def test_update_self(self, client, diner_session):
        user_id = diner_session["user"]["id"]
        r = client.put(
            f"/api/user/{user_id}",
            json={"name": "renamed", "email": "renamed@test.com", "password": "b"},
            headers=_bearer(diner_session["token"]),
        )

        assert r.status_code == 200
        body = r.json()
        assert body["user"] == {"id": user_id, "name": "renamed", "email": "renamed@test.com", "roles": [{"role": "diner"}]}
        assert JWT_PATTERN.match(body["token"])

        r = client.put("/api/auth", json={"email": "renamed@test.com", "password": "b"})
        assert r.status_code == 200

    def test_update_other_user_is_forbidden(self, client, diner_session, admin_session):
        r = client.put(
            f"/api/user/{admin_session['user']['id']}",
            json={"name": "hacked"},
            headers=_bearer(diner_session["token"]),
        )

        assert r.status_code == 403
        assert r.json() == {"message": "unauthorized"}

    def test_admin_can_update_anyone(self, client, diner_session, admin_session):
        r = client.put(
            f"/api/user/{diner_session['user']['id']}",
            json={"name": "by admin"},
            headers=_bearer(admin_session["token"]),
        )

        assert r.status_code == 200
        assert r.json()["user"]["name"] == "by admin"

    def test_list_users_requires_admin(self, client, diner_session):
        r = client.get("/api/user", headers=_bearer(diner_session["token"]))
        assert r.status_code == 403

    def test_list_users(self, client, diner_session, admin_session):
        r = client.get("/api/user?page=1&limit=1&name=*", headers=_bearer(admin_session["token"]))

        assert r.status_code == 200
        body = r.json()
        assert [u["email"] for u in body["users"]] == ["a@jwt.com"]
        assert body["more"] is True

        r = client.get("/api/user?name=pizza*", headers=_bearer(admin_session["token"]))
        assert [u["email"] for u in r.json()["users"]] == ["d@test.com"]
        assert r.json()["more"] is False

    def test_list_users_unauthenticated(self, client):
        assert client.get("/api/user").status_code == 401

    def test_delete_self(self, client, diner_session):
        headers = _bearer(diner_session["token"])

        r = client.delete(f"/api/user/{diner_session['user']['id']}", headers=headers)
        assert r.status_code == 204

        assert client.get("/api/user/me", headers=headers).status_code == 401
        r = client.put("/api/auth", json={"email": "d@test.com", "password": "a"})
        assert r.status_code == 401

    def test_delete_other_user_is_forbidden(self, client, diner_session, admin_session):
        r = client.delete(f"/api/user/{admin_session['user']['id']}", headers=_bearer(diner_session["token"]))
        assert r.status_code == 403


MENU_ITEM = {"title": "Student", "description": "No topping, no sauce, just carbs", "image": "pizza9.png", "price": 0.0001}


class TestMenuAndOrders:
    def test_menu_is_public(self, client):
        r = client.get("/api/order/menu")

        assert r.status_code == 200
        assert r.json() == []

    def test_add_menu_item_requires_admin(self, client, diner_session):
        r = client.put("/api/order/menu", json=MENU_ITEM, headers=_bearer(diner_session["token"]))

        assert r.status_code == 403
        assert r.json() == {"message": "unable to add menu item"}

    def test_admin_adds_menu_item(self, client, admin_session):
        r = client.put("/api/order/menu", json=MENU_ITEM, headers=_bearer(admin_session["token"]))

        assert r.status_code == 200
        [item] = r.json()
        assert item["id"] > 0
        assert {k: item[k] for k in MENU_ITEM} == MENU_ITEM

    @pytest.fixture
    def menu_id(self, client, admin_session):
        r = client.put("/api/order/menu", json=MENU_ITEM, headers=_bearer(admin_session["token"]))
        return r.json()[0]["id"]

    def test_order_is_sent_to_factory(self, client, diner_session, menu_id, monkeypatch):
        calls = []

        def fake_order_pizzas(base_url, api_key, *, diner, order, timeout):
            calls.append({"base_url": base_url, "api_key": api_key, "diner": diner, "order": order})
            return {"jwt": "factory.signed.jwt", "reportUrl": "https://factory.test/report/1"}

        monkeypatch.setattr(server, "order_pizzas", fake_order_pizzas)

        r = client.post(
            "/api/order",
            json={"franchiseId": 1, "storeId": 1, "items": [{"menuId": menu_id, "description": "Student", "price": 9}]},
            headers=_bearer(diner_session["token"]),
        )

        assert r.status_code == 200
        body = r.json()
        assert body["jwt"] == "factory.signed.jwt"
        assert body["followLinkToEndChaos"] == "https://factory.test/report/1"
        assert body["order"]["items"][0]["price"] == 0.0001

        [call] = calls
        assert call["base_url"] == "https://factory.test"
        assert call["api_key"] == "factory-key"
        assert call["diner"]["email"] == "d@test.com"
        assert call["order"]["id"] == body["order"]["id"]

        r = client.get("/api/order", headers=_bearer(diner_session["token"]))
        history = r.json()
        assert history["dinerId"] == diner_session["user"]["id"]
        assert [o["id"] for o in history["orders"]] == [body["order"]["id"]]

    def test_factory_failure(self, client, diner_session, menu_id, monkeypatch):
        def failing_order_pizzas(*args, **kwargs):
            raise FactoryError("factory error 500", report_url="https://factory.test/report/2", status_code=500)

        monkeypatch.setattr(server, "order_pizzas", failing_order_pizzas)

        r = client.post(
            "/api/order",
            json={"franchiseId": 1, "storeId": 1, "items": [{"menuId": menu_id}]},
            headers=_bearer(diner_session["token"]),
        )

        assert r.status_code == 500
        assert r.json() == {
            "message": "Failed to fulfill order at factory",
            "followLinkToEndChaos": "https://factory.test/report/2",
        }

    def test_order_with_unknown_menu_item(self, client, diner_session, monkeypatch):
        calls = []
        monkeypatch.setattr(server, "order_pizzas", lambda *a, **kw: calls.append(kw))

        r = client.post(
            "/api/order",
            json={"franchiseId": 1, "storeId": 1, "items": [{"menuId": 9999}]},
            headers=_bearer(diner_session["token"]),
        )

        assert r.status_code == 404
        assert r.json() == {"message": "no such menu item"}
        assert calls == []

    def test_orders_require_auth(self, client):
        assert client.get("/api/order").status_code == 401

    def test_order_missing_fields_is_a_bad_request(self, client, diner_session):
        r = client.post("/api/order", json={"storeId": 1, "items": []}, headers=_bearer(diner_session["token"]))

        assert r.status_code == 400
        assert list(r.json()) == ["message"]
        assert r.json()["message"].startswith("franchiseId:")

    def test_bad_query_parameter_is_a_bad_request(self, client, diner_session):
        r = client.get("/api/order?page=0", headers=_bearer(diner_session["token"]))

        assert r.status_code == 400
        assert r.json()["message"].startswith("page:")


class TestFranchises:
    @pytest.fixture
    def franchise(self, client, admin_session, diner_session):
        r = client.post(
            "/api/franchise",
            json={"name": "pizzaPocket", "admins": [{"email": "d@test.com"}]},
            headers=_bearer(admin_session["token"]),
        )
        assert r.status_code == 200, r.text
        return r.json()

    def test_create_requires_admin(self, client, diner_session):
        r = client.post("/api/franchise", json={"name": "mine", "admins": []}, headers=_bearer(diner_session["token"]))

        assert r.status_code == 403
        assert r.json() == {"message": "unable to create a franchise"}

    def test_create_with_unknown_admin(self, client, admin_session):
        r = client.post(
            "/api/franchise",
            json={"name": "ghosts", "admins": [{"email": "ghost@test.com"}]},
            headers=_bearer(admin_session["token"]),
        )

        assert r.status_code == 404
        assert r.json() == {"message": "unknown user for franchise admin ghost@test.com provided"}

    def test_franchisee_manages_stores(self, client, diner_session, franchise):
        headers = _bearer(diner_session["token"])

        r = client.post(f"/api/franchise/{franchise['id']}/store", json={"name": "SLC"}, headers=headers)
        assert r.status_code == 200
        store = r.json()
        assert store["name"] == "SLC"
        assert store["franchiseId"] == franchise["id"]

        r = client.get(f"/api/franchise/{diner_session['user']['id']}", headers=headers)
        [mine] = r.json()
        assert mine["stores"] == [{"id": store["id"], "name": "SLC", "totalRevenue": 0.0}]

        r = client.delete(f"/api/franchise/{franchise['id']}/store/{store['id']}", headers=headers)
        assert r.status_code == 200
        assert r.json() == {"message": "store deleted"}

    def test_outsider_cannot_create_store(self, client, franchise):
        outsider = _register(client, name="outsider", email="o@test.com")

        r = client.post(
            f"/api/franchise/{franchise['id']}/store",
            json={"name": "SLC"},
            headers=_bearer(outsider["token"]),
        )

        assert r.status_code == 403
        assert r.json() == {"message": "unable to create a store"}

    def test_other_users_franchises_are_hidden(self, client, diner_session, admin_session, franchise):
        r = client.get(f"/api/franchise/{admin_session['user']['id']}", headers=_bearer(diner_session["token"]))

        assert r.status_code == 200
        assert r.json() == []

    def test_public_listing(self, client, franchise):
        r = client.get("/api/franchise?page=0&limit=10&name=*")

        assert r.status_code == 200
        body = r.json()
        assert body["more"] is False
        assert body["franchises"] == [{"id": franchise["id"], "name": "pizzaPocket", "stores": []}]

    def test_admin_listing_includes_admins(self, client, admin_session, franchise):
        r = client.get("/api/franchise", headers=_bearer(admin_session["token"]))

        [listed] = r.json()["franchises"]
        assert listed["admins"][0]["email"] == "d@test.com"

    def test_delete_requires_admin(self, client, diner_session, franchise):
        r = client.delete(f"/api/franchise/{franchise['id']}", headers=_bearer(diner_session["token"]))

        assert r.status_code == 403
        assert r.json() == {"message": "unable to delete a franchise"}

    def test_admin_deletes_franchise(self, client, admin_session, franchise):
        r = client.delete(f"/api/franchise/{franchise['id']}", headers=_bearer(admin_session["token"]))

        assert r.status_code == 200
        assert r.json() == {"message": "franchise deleted"}
        assert client.get("/api/franchise").json()["franchises"] == []

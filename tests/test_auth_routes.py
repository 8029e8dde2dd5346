import pytest

from conftest import PASSWORD, order_payload
from qistmarket.models import db, Role, User, ROLE_ADMIN, ROLE_SALES_OFFICER, ROLE_VERIFICATION_OFFICER
from qistmarket.error_handler import ConflictError
from qistmarket.services.orders import OrderLifecycleEngine
from qistmarket.services.users import commit_user_changes, conflicting_field


def role_id(name):
    return Role.query.filter_by(name=name).one().id


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def login(client, partition, username, password=PASSWORD, **extra):
    return client.post(f"/api/login/{partition}", json={"username": username, "password": password, **extra})


def signup_payload(**overrides):
    payload = {
        "full_name": "New Staff",
        "username": "newstaff",
        "password": "longenough",
        "role_id": role_id(ROLE_SALES_OFFICER),
    }
    payload.update(overrides)
    return payload


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["data"]["database"] == "ok"


def test_signup_creates_account_that_can_sign_in(client, users, auth_headers):
    response = client.post("/api/signup", json=signup_payload(), headers=auth_headers(users["admin"]))

    assert response.status_code == 201
    body = response.get_json()
    assert body["data"]["user"]["username"] == "newstaff"
    assert body["data"]["user"]["role"] == ROLE_SALES_OFFICER
    assert login(client, "web", "newstaff", "longenough").status_code == 200


def test_signup_requires_an_administrator(client, users, auth_headers):
    assert client.post("/api/signup", json=signup_payload()).status_code == 401

    response = client.post("/api/signup", json=signup_payload(), headers=auth_headers(users["sales"]))
    assert response.status_code == 403


def test_signup_duplicate_username_names_the_field(client, users, auth_headers):
    response = client.post("/api/signup", json=signup_payload(username="sales"), headers=auth_headers(users["admin"]))

    assert response.status_code == 409
    assert response.get_json() == {"success": False, "error": {"code": 409, "message": "username already exists"}}


def test_signup_unknown_role(client, users, auth_headers):
    response = client.post("/api/signup", json=signup_payload(role_id=999), headers=auth_headers(users["admin"]))

    assert response.status_code == 404
    assert response.get_json()["error"]["message"] == "Invalid role ID"


def test_signup_reports_missing_fields(client, users, auth_headers):
    payload = signup_payload()
    del payload["password"]

    response = client.post("/api/signup", json=payload, headers=auth_headers(users["admin"]))

    assert response.status_code == 400
    assert "password" in response.get_json()["error"]["details"]


def test_only_super_admin_creates_administrators(client, users, auth_headers):
    payload = signup_payload(username="deputy", role_id=role_id(ROLE_ADMIN))

    assert client.post("/api/signup", json=payload, headers=auth_headers(users["admin"])).status_code == 403
    assert client.post("/api/signup", json=payload, headers=auth_headers(users["root"])).status_code == 201


def test_web_login_returns_token_and_sets_cookie(client, users):
    response = login(client, "web", "admin")

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["token"]
    assert data["user"]["username"] == "admin"
    assert "password_hash" not in data["user"]
    cookie = response.headers.get("Set-Cookie")
    assert "access_token=" in cookie
    assert "HttpOnly" in cookie


def test_login_rejects_bad_credentials(client, users):
    wrong_password = login(client, "web", "admin", "not-the-password")
    unknown_user = login(client, "web", "ghost")

    for response in (wrong_password, unknown_user):
        assert response.status_code == 401
        assert response.get_json()["error"]["message"] == "Invalid credentials"


def test_login_partitions(client, users):
    assert login(client, "web", "officer1").status_code == 403
    assert login(client, "app", "admin", device_id="tablet").status_code == 403
    assert login(client, "app", "officer1").status_code == 400
    assert login(client, "app", "officer1", device_id="phone-9").status_code == 200


def test_disabled_account_cannot_sign_in(client, make_user):
    make_user("leaver", ROLE_SALES_OFFICER, status="inactive")

    response = login(client, "web", "leaver")

    assert response.status_code == 403
    assert response.get_json()["error"]["message"] == "Account is disabled"


def test_app_login_on_new_device_invalidates_old_token(client, users):
    old = login(client, "app", "officer1", device_id="phone-a", fcm_token="fcm-a").get_json()["data"]["token"]
    new = login(client, "app", "officer1", device_id="phone-b", fcm_token="fcm-b").get_json()["data"]["token"]

    assert client.get("/api/profile", headers=bearer(old)).status_code == 401
    assert client.get("/api/profile", headers=bearer(new)).status_code == 200
    assert db.session.get(User, users["officer1"].id).fcm_token == "fcm-b"


def test_logout_unbinds_device(client, users, auth_headers):
    headers = auth_headers(users["officer1"])

    assert client.post("/api/logout", headers=headers).status_code == 200
    assert client.get("/api/profile", headers=headers).status_code == 401


def test_invalid_token(client):
    response = client.get("/api/profile", headers=bearer("not-a-jwt"))

    assert response.status_code == 401
    assert response.get_json()["success"] is False


def test_role_change_applies_to_existing_token(client, users, auth_headers):
    sales_headers = auth_headers(users["sales"])
    assert client.get("/api/users", headers=sales_headers).status_code == 403

    response = client.put(
        f"/api/users/{users['sales'].id}",
        json={"role_id": role_id(ROLE_ADMIN)},
        headers=auth_headers(users["root"]),
    )
    assert response.status_code == 200

    assert client.get("/api/users", headers=sales_headers).status_code == 200


def test_deactivated_user_is_rejected_immediately(client, users, auth_headers):
    officer_headers = auth_headers(users["officer1"])

    response = client.patch(
        f"/api/users/{users['officer1'].id}/status", json={"status": "inactive"}, headers=auth_headers(users["admin"]))
    assert response.status_code == 200

    response = client.get("/api/profile", headers=officer_headers)
    assert response.status_code == 403
    assert response.get_json()["error"]["message"] == "Account is disabled"


def test_administrators_cannot_act_on_themselves(client, users, auth_headers):
    headers = auth_headers(users["admin"])

    assert client.delete(f"/api/users/{users['admin'].id}", headers=headers).status_code == 403
    assert client.patch(f"/api/users/{users['admin'].id}/status", json={}, headers=headers).status_code == 403


def test_admin_cannot_manage_super_admin(client, users, auth_headers):
    response = client.put(
        f"/api/users/{users['root'].id}", json={"full_name": "Renamed"}, headers=auth_headers(users["admin"]))

    assert response.status_code == 403


def test_delete_user_with_orders_conflicts(app, client, users, auth_headers):
    OrderLifecycleEngine(db.session).create_order(order_payload(), users["sales"].id)
    headers = auth_headers(users["admin"])

    assert client.delete(f"/api/users/{users['sales'].id}", headers=headers).status_code == 409
    assert client.delete(f"/api/users/{users['officer2'].id}", headers=headers).status_code == 200
    assert db.session.get(User, users["officer2"].id) is None


def test_permission_overrides_merge_over_role(client, users, auth_headers):
    response = client.patch(
        f"/api/users/{users['sales'].id}/permissions",
        json={"permissions": {"export_orders": True}},
        headers=auth_headers(users["admin"]),
    )

    assert response.status_code == 200
    assert response.get_json()["data"]["user"]["effective_permissions"]["export_orders"] is True

    response = client.patch(
        f"/api/users/{users['sales'].id}/permissions", json={"permissions": ["x"]}, headers=auth_headers(users["admin"]))
    assert response.status_code == 400


def test_profile_update_checks_uniqueness(client, users, auth_headers, make_user):
    make_user("other", ROLE_SALES_OFFICER, email="taken@example.com")
    headers = auth_headers(users["sales"])

    response = client.put("/api/profile", json={"email": "taken@example.com"}, headers=headers)
    assert response.status_code == 409
    assert response.get_json()["error"]["message"] == "email already exists"

    response = client.put("/api/profile", json={"full_name": "Sales Lead", "bio": "<b>hi</b>"}, headers=headers)
    assert response.status_code == 200
    assert response.get_json()["data"]["user"]["full_name"] == "Sales Lead"


def test_verification_officer_directory(client, users, auth_headers):
    response = client.get("/api/users/verification-officers", headers=auth_headers(users["sales"]))

    officers = response.get_json()["data"]["officers"]
    assert [officer["username"] for officer in officers] == ["officer1", "officer2"]
    assert all(officer["open_assignments"] == 0 for officer in officers)


def test_roles_listing(client, users, auth_headers):
    response = client.get("/api/roles", headers=auth_headers(users["sales"]))

    names = {role["name"] for role in response.get_json()["data"]["roles"]}
    assert names == {ROLE_VERIFICATION_OFFICER, ROLE_SALES_OFFICER, ROLE_ADMIN, "Super Admin"}


@pytest.mark.parametrize("message, field", [
    ("UNIQUE constraint failed: users.email", "email"),
    ("(1062, \"Duplicate entry 'username@qist.pk' for key 'users.email'\")", "email"),
    ("(1062, \"Duplicate entry '35202-1234567-1' for key 'cnic'\")", "cnic"),
    ('duplicate key value violates unique constraint "users_phone_key"\nDETAIL:  Key (phone)=(0300) already exists.',
     "phone"),
    ("(1062, \"Duplicate entry 'x' for key 'PRIMARY'\")", None),
])
def test_conflicting_field_reads_the_constraint_not_the_value(message, field):
    assert conflicting_field(message) == field


def test_lost_uniqueness_race_names_the_field(make_user):
    make_user("first", ROLE_SALES_OFFICER, email="username@qist.pk")
    db.session.add(User(
        full_name="Second", username="second", password_hash="x",
        role_id=role_id(ROLE_SALES_OFFICER), email="username@qist.pk",
    ))

    with pytest.raises(ConflictError, match="^email already exists$"):
        commit_user_changes(db.session)
    assert User.query.filter_by(email="username@qist.pk").count() == 1

"""
tests/test_api_routes.py -- Integration tests for the HTTP surface.

These tests exercise the full stack: FastAPI routing -> require_access()
dependency -> AccessMiddleware pipeline -> services -> CredentialStore ->
response model serialization and the error envelope.

Coverage:
  - End-to-end: register -> bearer GET /users -> 403 on a doctor/patient route
  - Register: 201 token, 400 field errors, 409 duplicate email
  - Login: 200 token, identical 401 for wrong password and unknown email
  - Protected routes: 401 without / with bad token, 403 on role mismatch
  - User CRUD: get, create, partial update, invalid role, delete twice
  - Roles: list, create, delete blocked while in use
  - secret_hash never appears in a response

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- TestClient with an admin bearer token
"""

from __future__ import annotations

from fastapi.testclient import TestClient

ADMIN, DOCTOR, PATIENT = 1, 2, 3


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register(client: TestClient, email: str, role_id: int, name: str = "User", password: str = "secret") -> str:
    resp = client.post("/register", json={"name": name, "email": email, "password": password, "role_id": role_id})
    assert resp.status_code == 201, resp.text
    return resp.json()["token"]


class TestEndToEnd:
    def test_register_list_and_forbidden(self, api_client: tuple[TestClient, str, int]) -> None:
        """Register an admin, list users with its token, then hit a doctor/patient route."""
        client, _token, _uid = api_client
        resp = client.post("/register", json={"name": "A", "email": "a@x.com", "password": "secret", "role_id": 1})
        assert resp.status_code == 201
        token = resp.json()["token"]

        resp = client.get("/users", headers=_auth(token))
        assert resp.status_code == 200
        assert "A" in [u["name"] for u in resp.json()]

        resp = client.get("/patients", headers=_auth(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"


class TestRegister:
    def test_register_returns_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/register",
            json={
                "name": "Reg",
                "email": "reg@x.com",
                "password": "secret",
                "password_confirmation": "secret",
                "role_id": PATIENT,
            },
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["token"]
        assert body["token_type"] == "bearer"
        assert body["expires_in"] > 0
        assert resp.headers["cache-control"] == "no-store"

        me = client.get("/me", headers=_auth(body["token"]))
        assert me.status_code == 200
        assert me.json()["email"] == "reg@x.com"

    def test_register_field_errors(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/register", json={"name": "", "email": "nope", "password": "123", "role_id": 99})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert set(error["fields"]) == {"name", "email", "password", "role_id"}

    def test_register_missing_fields(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/register", json={"email": "missing@x.com"})
        assert resp.status_code == 400
        fields = resp.json()["error"]["fields"]
        assert {"name", "password", "role_id"} <= set(fields)

    def test_register_confirmation_mismatch(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/register",
            json={
                "name": "C",
                "email": "confirm@x.com",
                "password": "secret",
                "password_confirmation": "secrets",
                "role_id": PATIENT,
            },
        )
        assert resp.status_code == 400
        assert "password" in resp.json()["error"]["fields"]

    def test_register_password_over_bcrypt_limit(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        for i, password in enumerate(["p" * 80, "\u00e9" * 40]):
            resp = client.post(
                "/register",
                json={"name": "Long", "email": f"long{i}@x.com", "password": password, "role_id": PATIENT},
            )
            assert resp.status_code == 400, resp.text
            error = resp.json()["error"]
            assert error["code"] == "validation_error"
            assert set(error["fields"]) == {"password"}

    def test_register_duplicate_email(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "dup@x.com", PATIENT)
        resp = client.post(
            "/register", json={"name": "Dup", "email": "DUP@x.com", "password": "secret", "role_id": PATIENT}
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_email"


class TestLogin:
    def test_login_success(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "login@x.com", DOCTOR, password="doctorpw")
        resp = client.post("/login", json={"email": "login@x.com", "password": "doctorpw"})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        me = client.get("/me", headers=_auth(resp.json()["token"]))
        assert me.json()["email"] == "login@x.com"

    def test_login_failures_identical(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "victim@x.com", PATIENT)
        wrong_password = client.post("/login", json={"email": "victim@x.com", "password": "guess123"})
        unknown_email = client.post("/login", json={"email": "ghost@x.com", "password": "guess123"})
        assert wrong_password.status_code == unknown_email.status_code == 401
        assert wrong_password.json() == unknown_email.json()
        assert wrong_password.json()["error"]["code"] == "invalid_credentials"


class TestAccessControl:
    def test_no_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        for method, path in [("GET", "/users"), ("GET", "/users/1"), ("POST", "/users"), ("DELETE", "/users/1")]:
            resp = client.request(method, path)
            assert resp.status_code == 401, f"{method} {path} -> {resp.status_code}"
            assert resp.json()["error"]["code"] == "unauthorized"

    def test_invalid_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/users", headers=_auth("garbage"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_wrong_scheme(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.get("/users", headers={"Authorization": f"Token {token}"})
        assert resp.status_code == 401

    def test_patient_cannot_list_users(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        patient_token = _register(client, "patient-acl@x.com", PATIENT)
        resp = client.get("/users", headers=_auth(patient_token))
        assert resp.status_code == 403

    def test_deleted_user_token_rejected(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        doomed_token = _register(client, "doomed@x.com", DOCTOR)
        doomed_id = client.get("/me", headers=_auth(doomed_token)).json()["id"]
        assert client.delete(f"/users/{doomed_id}", headers=_auth(token)).status_code == 204
        assert client.get("/me", headers=_auth(doomed_token)).status_code == 401

    def test_patients_route(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        doctor_token = _register(client, "doc-pat@x.com", DOCTOR)
        patient_token = _register(client, "pat-pat@x.com", PATIENT)

        as_doctor = client.get("/patients", headers=_auth(doctor_token))
        assert as_doctor.status_code == 200
        assert "pat-pat@x.com" in [u["email"] for u in as_doctor.json()]
        assert all(u["role_id"] == PATIENT for u in as_doctor.json())

        as_patient = client.get("/patients", headers=_auth(patient_token))
        assert as_patient.status_code == 200
        assert [u["email"] for u in as_patient.json()] == ["pat-pat@x.com"]


class TestUserCrud:
    def test_create_get_update_delete(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        headers = _auth(token)

        resp = client.post(
            "/users", json={"name": "Crud", "email": "crud@x.com", "password": "secret", "role_id": DOCTOR}, headers=headers
        )
        assert resp.status_code == 201
        user = resp.json()
        assert "secret_hash" not in user
        assert "password" not in user

        resp = client.get(f"/users/{user['id']}", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["email"] == "crud@x.com"

        resp = client.patch(f"/users/{user['id']}", json={"name": "Crud Renamed"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["name"] == "Crud Renamed"
        assert resp.json()["email"] == "crud@x.com"
        assert resp.json()["role_id"] == DOCTOR

        resp = client.put(f"/users/{user['id']}", json={"role_id": PATIENT}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["role_id"] == PATIENT
        assert resp.json()["name"] == "Crud Renamed"

        assert client.delete(f"/users/{user['id']}", headers=headers).status_code == 204
        resp = client.delete(f"/users/{user['id']}", headers=headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_update_to_unknown_role(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        headers = _auth(token)
        user = client.post(
            "/users", json={"name": "Ref", "email": "ref@x.com", "password": "secret", "role_id": DOCTOR}, headers=headers
        ).json()

        resp = client.put(f"/users/{user['id']}", json={"role_id": 999, "name": "Nope"}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_reference"

        unchanged = client.get(f"/users/{user['id']}", headers=headers).json()
        assert unchanged == user

    def test_update_validation(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, uid = api_client
        resp = client.patch(f"/users/{uid}", json={"email": "broken"}, headers=_auth(token))
        assert resp.status_code == 400
        assert "email" in resp.json()["error"]["fields"]

    def test_update_password_over_bcrypt_limit(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, uid = api_client
        for password in ["p" * 80, "\u00e9" * 40]:
            resp = client.patch(f"/users/{uid}", json={"password": password}, headers=_auth(token))
            assert resp.status_code == 400, resp.text
            assert set(resp.json()["error"]["fields"]) == {"password"}
        assert client.post("/login", json={"email": "admin@caregate.test", "password": "adminpass"}).status_code == 200

    def test_update_empty_body(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, uid = api_client
        resp = client.patch(f"/users/{uid}", json={}, headers=_auth(token))
        assert resp.status_code == 400

    def test_get_missing_user(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.get("/users/999999", headers=_auth(token))
        assert resp.status_code == 404

    def test_list_never_exposes_hashes(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.get("/users", headers=_auth(token))
        assert resp.status_code == 200
        assert "secret_hash" not in resp.text
        assert "$2b$" not in resp.text

    def test_list_filter_by_role(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.get("/users", params={"role_id": ADMIN}, headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()
        assert all(u["role_id"] == ADMIN for u in resp.json())


class TestRoles:
    def test_list_roles_any_authenticated(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        patient_token = _register(client, "roles-reader@x.com", PATIENT)
        resp = client.get("/roles", headers=_auth(patient_token))
        assert resp.status_code == 200
        names = {r["id"]: r["name"] for r in resp.json()}
        assert names[1] == "admin"
        assert names[2] == "doctor"
        assert names[3] == "patient"

    def test_create_and_delete_role(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post("/roles", json={"name": "nurse"}, headers=_auth(token))
        assert resp.status_code == 201
        role_id = resp.json()["id"]
        assert client.delete(f"/roles/{role_id}", headers=_auth(token)).status_code == 204
        assert client.delete(f"/roles/{role_id}", headers=_auth(token)).status_code == 404

    def test_role_in_use_cannot_be_deleted(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        role_id = client.post("/roles", json={"name": "porter"}, headers=_auth(token)).json()["id"]
        _register(client, "porter@x.com", role_id)
        resp = client.delete(f"/roles/{role_id}", headers=_auth(token))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "role_in_use"

    def test_seeded_role_cannot_be_deleted(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        for role_id in (ADMIN, DOCTOR, PATIENT):
            resp = client.delete(f"/roles/{role_id}", headers=_auth(token))
            assert resp.status_code == 409
            assert resp.json()["error"]["code"] == "role_protected"
        names = {r["name"] for r in client.get("/roles", headers=_auth(token)).json()}
        assert {"admin", "doctor", "patient"} <= names

    def test_non_admin_cannot_create_role(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        doctor_token = _register(client, "roles-doc@x.com", DOCTOR)
        resp = client.post("/roles", json={"name": "surgeon"}, headers=_auth(doctor_token))
        assert resp.status_code == 403

# tests/test_auth.py - Registration, login and token verification
from datetime import timedelta

import pytest
from httpx import AsyncClient
from jose import jwt

from auth import AuthService, SECRET_KEY, ALGORITHM
from tests.conftest import get_auth_headers


@pytest.mark.asyncio
class TestRegistration:
    async def test_register_success(self, client: AsyncClient):
        res = await client.post("/api/auth/register", json={
            "login": "ivan123",
            "password": "secret",
            "name": "Ivan",
            "lastname": "Petrov",
        })
        assert res.status_code == 201
        data = res.json()
        assert isinstance(data["id"], int)
        assert data["login"] == "ivan123"
        assert data["name"] == "Ivan"
        assert data["lastname"] == "Petrov"
        assert data["role"] == "engineer"
        assert "password" not in data
        assert "password_hash" not in data

    async def test_register_duplicate_login(self, client: AsyncClient):
        payload = {"login": "dupe", "password": "secret"}
        first = await client.post("/api/auth/register", json=payload)
        assert first.status_code == 201

        res = await client.post("/api/auth/register", json=payload)
        assert res.status_code == 409
        assert res.json() == {"error": "user already exists"}

    async def test_register_empty_credentials(self, client: AsyncClient):
        res = await client.post("/api/auth/register", json={"login": "", "password": ""})
        assert res.status_code == 400
        assert res.json()["error"] == "login and password required"

    async def test_register_missing_field(self, client: AsyncClient):
        res = await client.post("/api/auth/register", json={"login": "nopass"})
        assert res.status_code == 400
        assert "error" in res.json()

    async def test_register_malformed_body(self, client: AsyncClient):
        res = await client.post(
            "/api/auth/register",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert res.status_code == 400


@pytest.mark.asyncio
class TestLogin:
    async def test_register_then_login(self, client: AsyncClient):
        reg = await client.post("/api/auth/register", json={
            "login": "ivan123",
            "password": "secret",
            "name": "Ivan",
            "lastname": "Petrov",
        })
        user_id = reg.json()["id"]

        res = await client.post("/api/auth/login", json={"login": "ivan123", "password": "secret"})
        assert res.status_code == 200
        data = res.json()
        assert data["token_type"] == "Bearer"
        assert data["expires_in"] == 86400

        claims = jwt.decode(data["access_token"], SECRET_KEY, algorithms=[ALGORITHM])
        assert claims["sub"] == str(user_id)
        assert claims["login"] == "ivan123"
        assert claims["role"] == "engineer"
        assert claims["exp"] - claims["iat"] == 86400

    async def test_login_wrong_password(self, client: AsyncClient, engineer_user):
        res = await client.post("/api/auth/login", json={"login": "engineer", "password": "wrong"})
        assert res.status_code == 401
        assert res.json() == {"error": "invalid credentials"}

    async def test_login_unknown_user(self, client: AsyncClient):
        res = await client.post("/api/auth/login", json={"login": "nobody", "password": "x"})
        assert res.status_code == 401
        assert res.json() == {"error": "invalid credentials"}


@pytest.mark.asyncio
class TestTokens:
    async def test_access_protected_route(self, client: AsyncClient, engineer_user):
        res = await client.get("/api/me", headers=get_auth_headers(engineer_user))
        assert res.status_code == 200
        assert res.json()["id"] == engineer_user.id

    async def test_missing_header(self, client: AsyncClient):
        res = await client.get("/api/me")
        assert res.status_code == 401
        assert res.json() == {"error": "missing or invalid Authorization header"}

    async def test_non_bearer_scheme(self, client: AsyncClient):
        res = await client.get("/api/me", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert res.status_code == 401

    async def test_bad_signature(self, client: AsyncClient, engineer_user):
        token = jwt.encode(
            {"sub": str(engineer_user.id), "role": "engineer"},
            "some-other-secret-key-that-is-long-enough",
            algorithm=ALGORITHM,
        )
        res = await client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.json() == {"error": "invalid token"}

    async def test_expired_token(self, client: AsyncClient, engineer_user):
        token = AuthService.create_access_token(engineer_user, expires_delta=timedelta(seconds=-30))
        res = await client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.json() == {"error": "token expired"}

    async def test_non_numeric_subject(self, client: AsyncClient):
        token = jwt.encode({"sub": "abc", "role": "manager"}, SECRET_KEY, algorithm=ALGORITHM)
        res = await client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.json() == {"error": "invalid token subject"}

    async def test_unknown_role_is_denied(self, client: AsyncClient, test_building):
        token = jwt.encode({"sub": "1", "role": "admin"}, SECRET_KEY, algorithm=ALGORITHM)
        res = await client.delete(
            f"/api/buildings/{test_building.id}",
            headers={"Authorization": f"Bearer {token}"},
        )
        assert res.status_code == 403
        assert res.json() == {"error": "insufficient permissions"}


class TestPasswordHashing:
    def test_hash_is_not_plaintext(self):
        hashed = AuthService.hash_password("secret")
        assert hashed != "secret"
        assert AuthService.verify_password("secret", hashed)
        assert not AuthService.verify_password("Secret", hashed)

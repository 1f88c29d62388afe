import bcrypt
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from medshop.api.dependencies.auth import get_current_user, require_manager, require_roles
from medshop.core.config import Settings, get_settings
from medshop.core.errors import AppError, register_exception_handlers
from medshop.security.passwords import hash_password, verify_password
from medshop.security.tokens import REFRESH_TOKEN, decode_token, issue_token
from medshop.services.auth import AuthService
from medshop.services.cache import CacheService


def test_password_hash_round_trip():
    hashed = hash_password("correct horse", rounds=4)
    assert hashed.startswith("bcrypt_sha256$")
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong horse", hashed)
    assert not verify_password("anything", None)


def test_plain_bcrypt_hashes_still_verify():
    legacy = bcrypt.hashpw(b"s3cret-pass", bcrypt.gensalt(rounds=4)).decode()
    assert verify_password("s3cret-pass", legacy)
    assert not verify_password("other", legacy)


def test_token_type_is_checked():
    token = issue_token(
        {"id": "u1", "email": "a@example.com", "role": "customer"},
        secret="k",
        expires_in=60,
        token_type=REFRESH_TOKEN,
    )
    assert decode_token(token, secret="k", expected_type=REFRESH_TOKEN)["userId"] == "u1"
    with pytest.raises(AppError) as excinfo:
        decode_token(token, secret="k")
    assert excinfo.value.message == "Invalid token"


def _protected_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/me")
    async def me(user: dict = Depends(get_current_user)):
        return user

    @app.get("/reports")
    async def reports(user: dict = Depends(require_manager)):
        return {"role": user["role"]}

    @app.get("/catalogue-admin")
    async def catalogue_admin(user: dict = Depends(require_roles("admin", "staff"))):
        return {"ok": True}

    return app


def _bearer(role="customer", *, expires_in=3600, secret=None):
    token = issue_token(
        {"id": "u-1", "email": "u@example.com", "role": role},
        secret=secret or get_settings().jwt_secret,
        expires_in=expires_in,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client():
    return TestClient(_protected_app())


def test_missing_token(client):
    response = client.get("/me")
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Authentication required"}


def test_malformed_token(client):
    response = client.get("/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid token"


def test_token_signed_with_another_secret(client):
    response = client.get("/me", headers=_bearer(secret="someone-elses-secret"))
    assert response.json()["message"] == "Invalid token"


def test_expired_token(client):
    response = client.get("/me", headers=_bearer(expires_in=-30))
    assert response.status_code == 401
    assert response.json()["message"] == "Token expired"


def test_valid_token_exposes_user(client):
    response = client.get("/me", headers=_bearer("staff"))
    assert response.status_code == 200
    assert response.json() == {"id": "u-1", "email": "u@example.com", "role": "staff"}


@pytest.mark.parametrize(
    "path, role, status_code",
    [
        ("/reports", "customer", 403),
        ("/reports", "staff", 403),
        ("/reports", "manager", 200),
        ("/reports", "admin", 200),
        ("/catalogue-admin", "manager", 403),
        ("/catalogue-admin", "staff", 200),
    ],
)
def test_role_guards(client, path, role, status_code):
    response = client.get(path, headers=_bearer(role))
    assert response.status_code == status_code
    if status_code == 403:
        assert response.json()["message"] == "Insufficient permissions"


@pytest.fixture
def auth_service(database):
    settings = Settings(_env_file=None, JWT_SECRET="auth-secret", BCRYPT_ROUNDS=4)
    return AuthService(database, CacheService(None), settings)


@pytest.mark.anyio
async def test_register_creates_user_and_customer(auth_service, database):
    result = await auth_service.register(
        email="new@example.com", password="password123", first_name="Minh"
    )

    assert result["user"]["role"] == "customer"
    assert result["accessToken"] and result["refreshToken"]
    customer = await database.fetch_one(
        "SELECT customer_code FROM customers WHERE id = %s", (result["user"]["id"],)
    )
    assert customer["customer_code"].startswith("CUST")


@pytest.mark.anyio
async def test_duplicate_registration_is_rejected(auth_service):
    await auth_service.register(email="dup@example.com", password="password123")
    with pytest.raises(AppError) as excinfo:
        await auth_service.register(email="dup@example.com", password="password123")
    assert excinfo.value.message == "Email already registered"


@pytest.mark.anyio
async def test_login_with_wrong_password(auth_service):
    await auth_service.register(email="who@example.com", password="password123")
    with pytest.raises(AppError) as excinfo:
        await auth_service.login(email="who@example.com", password="password124")
    assert excinfo.value.status_code == 401
    assert excinfo.value.message == "Invalid credentials"


@pytest.mark.anyio
async def test_refresh_tokens_are_single_use(auth_service):
    session = await auth_service.register(email="r@example.com", password="password123")

    rotated = await auth_service.refresh_token(session["refreshToken"])
    assert rotated["refreshToken"]

    with pytest.raises(AppError) as excinfo:
        await auth_service.refresh_token(session["refreshToken"])
    assert excinfo.value.message == "Invalid refresh token"


@pytest.mark.anyio
async def test_logout_revokes_refresh_token(auth_service):
    session = await auth_service.register(email="out@example.com", password="password123")
    await auth_service.logout(session["user"]["id"])

    with pytest.raises(AppError):
        await auth_service.refresh_token(session["refreshToken"])


@pytest.mark.anyio
async def test_change_password(auth_service):
    session = await auth_service.register(email="pw@example.com", password="password123")
    user_id = session["user"]["id"]

    with pytest.raises(AppError) as excinfo:
        await auth_service.change_password(
            user_id, old_password="nope-nope", new_password="newpassword1"
        )
    assert excinfo.value.message == "Invalid old password"

    await auth_service.change_password(
        user_id, old_password="password123", new_password="newpassword1"
    )
    login = await auth_service.login(email="pw@example.com", password="newpassword1")
    assert login["user"]["id"] == user_id


@pytest.mark.anyio
async def test_profile_includes_customer_summary(auth_service):
    session = await auth_service.register(email="me@example.com", password="password123")

    profile = await auth_service.profile(session["user"]["id"])

    assert profile["email"] == "me@example.com"
    assert "password_hash" not in profile
    assert profile["customer"]["totalOrders"] == 0

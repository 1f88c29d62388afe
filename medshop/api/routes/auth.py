from __future__ import annotations

from fastapi import APIRouter, Depends, status

from medshop.api.dependencies.auth import get_current_user
from medshop.api.dependencies.services import get_auth_service
from medshop.api.responses import success
from medshop.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegistrationRequest,
)
from medshop.services.auth import AuthService

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegistrationRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    result = await service.register(
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
    )
    return success(result, message="Registration successful")


@router.post("/login")
async def login(
    payload: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    result = await service.login(email=payload.email, password=payload.password)
    return success(result, message="Login successful")


@router.post("/refresh-token")
async def refresh_token(
    payload: RefreshTokenRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    return success(await service.refresh_token(payload.refresh_token))


@router.post("/logout")
async def logout(
    current_user: dict = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    result = await service.logout(current_user["id"])
    return success(message=result["message"])


@router.post("/change-password")
async def change_password(
    payload: ChangePasswordRequest,
    current_user: dict = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    result = await service.change_password(
        current_user["id"],
        old_password=payload.old_password,
        new_password=payload.new_password,
    )
    return success(message=result["message"])


@router.get("/profile")
async def profile(
    current_user: dict = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    return success(await service.profile(current_user["id"]))

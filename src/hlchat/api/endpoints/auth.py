"""Wallet login endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from hlchat.api.dependencies import GatewayDep
from hlchat.schemas.auth import AuthRequest, AuthResponse

router = APIRouter(tags=["authentication"])


@router.post("/auth", response_model=AuthResponse)
async def authenticate(payload: AuthRequest, gateway: GatewayDep) -> AuthResponse:
    """Exchange a fresh wallet signature for a session token."""
    token = gateway.authenticate_login(
        payload.address,
        payload.signature,
        payload.timestamp,
        payload.typed_data,
    )
    return AuthResponse(token=token)

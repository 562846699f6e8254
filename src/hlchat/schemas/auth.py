"""Login handshake schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuthRequest(BaseModel):
    """Signed proof that the caller controls ``address``."""

    address: str = Field(..., min_length=1, description="Wallet address (hex)")
    signature: str = Field(..., min_length=1, description="Hex-encoded wallet signature")
    timestamp: int = Field(..., description="Signing time in milliseconds since epoch")
    typed_data: dict[str, Any] | None = Field(
        default=None,
        alias="typedData",
        description="EIP-712 Login payload; plain login text is used when absent",
    )

    model_config = ConfigDict(populate_by_name=True)


class AuthResponse(BaseModel):
    """Session token returned after a successful login."""

    token: str

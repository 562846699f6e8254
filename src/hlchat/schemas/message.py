"""Chat message schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MessageRequest(BaseModel):
    """Body of ``POST /message``.

    Exactly one of ``message`` (plain signed JSON string) or ``typedData``
    (EIP-712 payload) carries the signed content.
    """

    signature: str = Field(..., min_length=1)
    message: str | None = Field(default=None, description="JSON string that was signed")
    typed_data: dict[str, Any] | None = Field(default=None, alias="typedData")
    address: str | None = None
    name: str | None = None
    pair: str | None = None
    market: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class MessageResponse(BaseModel):
    """Acknowledgement for an accepted message."""

    success: bool = True


class MessageOut(BaseModel):
    """A stored message as served to history readers and room subscribers."""

    room: str
    address: str
    name: str | None = None
    content: str
    timestamp: int
    nonce: str
    signature: str
    pair: str
    market: str

    model_config = ConfigDict(from_attributes=True)

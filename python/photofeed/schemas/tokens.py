"""Token encryption request/response schemas.

Field names follow the public JSON contract (camelCase) used by the
embeddable album widget.
"""

from pydantic import BaseModel, ConfigDict, Field


class EncryptTokenRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)


class EncryptTokenResponse(BaseModel):
    """Encrypted form of an album token, safe to publish."""

    encrypted_token: str = Field(..., alias="encryptedToken")

    model_config = ConfigDict(populate_by_name=True)

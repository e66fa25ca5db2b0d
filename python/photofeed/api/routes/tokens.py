"""Token encryption route."""

from fastapi import APIRouter

from photofeed.schemas.tokens import EncryptTokenRequest, EncryptTokenResponse
from photofeed.services.tokens import encrypt_public_token

router = APIRouter()


@router.post("/encrypt-token", response_model=EncryptTokenResponse, response_model_by_alias=True)
async def encrypt_token(body: EncryptTokenRequest) -> EncryptTokenResponse:
    """Encrypt an album token so it can be published without revealing it."""
    return EncryptTokenResponse(encrypted_token=encrypt_public_token(body.token))

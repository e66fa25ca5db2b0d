"""Request and response schemas."""

from photofeed.schemas.augmentation import AugmentationPendingOut
from photofeed.schemas.tokens import EncryptTokenRequest, EncryptTokenResponse

__all__ = ["AugmentationPendingOut", "EncryptTokenRequest", "EncryptTokenResponse"]

"""Augmentation response schemas.

Terminal records are returned as stored. Items still being worked on
get a small status body with HTTP 202.
"""

from typing import Literal

from pydantic import BaseModel


class AugmentationPendingOut(BaseModel):
    status: Literal["processing"] = "processing"

"""Pydantic schemas for admin operations"""
from pydantic import AliasChoices, BaseModel, Field, StrictInt


class GenerateLinkRequest(BaseModel):
    """Schema for minting an affiliate link"""
    video_id: str = Field(validation_alias=AliasChoices("videoId", "video_id"))
    destination_url: str = Field(validation_alias=AliasChoices("destinationUrl", "destination_url"))
    target_user_id: int = Field(validation_alias=AliasChoices("targetUserId", "target_user_id"))


class CreditEntriesRequest(BaseModel):
    """Schema for crediting entries to a user"""
    target_user_id: int = Field(validation_alias=AliasChoices("targetUserId", "target_user_id"))
    amount: StrictInt

# aimuse/schemas.py
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from aimuse.db import MAX_TOKEN_ID


class NFTAttribute(BaseModel):
    trait_type: str
    value: str


class NFTMetadata(BaseModel):
    name: str
    description: str
    image: str
    attributes: List[NFTAttribute] = Field(default_factory=list)


class MetadataResponse(BaseModel):
    tokenURI: str
    metadata: NFTMetadata


class NFTCreate(BaseModel):
    """Body of POST /api/nfts. Timestamps are accepted but the store overrides them."""
    model_config = ConfigDict(extra="ignore")

    tokenId: int
    owner: str
    prompt: str
    tokenURI: str
    image: str
    name: str
    description: str
    transactionHash: str
    attributes: List[NFTAttribute] = Field(default_factory=list)

    @field_validator("tokenId")
    @classmethod
    def token_id_in_range(cls, v):
        if v < 0:
            raise ValueError("tokenId must be non-negative")
        if v > MAX_TOKEN_ID:
            raise ValueError(f"tokenId must be at most {MAX_TOKEN_ID}")
        return v


class NFTUpdate(BaseModel):
    """Body of PUT /api/nfts/{tokenId}; every field optional."""
    model_config = ConfigDict(extra="ignore")

    owner: Optional[str] = None
    prompt: Optional[str] = None
    tokenURI: Optional[str] = None
    image: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    transactionHash: Optional[str] = None
    attributes: Optional[List[NFTAttribute]] = None


class PromptRequest(BaseModel):
    """Body of the metadata, mint and regenerate routes."""
    model_config = ConfigDict(extra="ignore", strict=True)

    prompt: str = Field(min_length=1)

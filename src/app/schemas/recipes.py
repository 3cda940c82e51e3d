from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

Number = Union[int, float]


class _ContentModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,
        allow_inf_nan=False,
    )


class Ingredient(_ContentModel):
    name: Optional[str] = None
    amount: Optional[str] = None
    unit: Optional[str] = None
    notes: Optional[str] = None


class RecipeStep(_ContentModel):
    order: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[Number] = None  # minutes
    temperature: Optional[str] = None


class RecipeContent(_ContentModel):
    """The fields of a recipe that make up its content fingerprint."""
    title: Optional[str] = None
    summary: Optional[str] = None
    content: Optional[str] = None
    ingredients: list[Ingredient] = Field(default_factory=list)
    steps: list[RecipeStep] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    category: Optional[str] = None
    prep_time: Optional[Number] = Field(default=None, alias="prepTime")
    cook_time: Optional[Number] = Field(default=None, alias="cookTime")
    servings: Optional[Number] = None

    @field_validator("ingredients", "steps", "tags", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class ProvenanceResponse(BaseModel):
    recipeHash: str
    authorWalletAddress: Optional[str] = None
    transactionHash: Optional[str] = None
    blockNumber: Optional[int] = None
    timestamp: Optional[str] = None
    isVerified: bool = False
    verificationReason: Optional[str] = None
    state: str


class AnchorVerificationResponse(BaseModel):
    recipeHash: str
    status: str
    exists: bool = False
    author: Optional[str] = None
    timestamp: Optional[str] = None
    transactionHash: Optional[str] = None
    blockNumber: Optional[int] = None
    error: Optional[str] = None


class RecipeIntegrityResponse(BaseModel):
    recipeId: str
    computedHash: str
    storedHash: Optional[str] = None
    contentMatches: bool
    authorMatches: Optional[bool] = None
    provenance: Optional[ProvenanceResponse] = None
    ledger: AnchorVerificationResponse


class ConnectionResponse(BaseModel):
    success: bool
    connected: bool = False
    networkId: Optional[str] = None
    chainId: Optional[int] = None
    url: Optional[str] = None
    error: Optional[str] = None


class RetryResponse(BaseModel):
    recipeId: str
    queued: bool

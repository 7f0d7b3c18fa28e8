from typing import Optional

from pydantic import BaseModel, Field

from applications.gigs.models import GigCategory


class PackageIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=600)
    price: float = Field(..., ge=5)
    delivery_time: int = Field(..., ge=1)
    revisions: int = Field(..., ge=0)
    features: list[str] = []


class PricingIn(BaseModel):
    basic: PackageIn
    standard: Optional[PackageIn] = None
    premium: Optional[PackageIn] = None


class RequirementIn(BaseModel):
    question: str
    type: str = Field("text", pattern="^(text|multiple-choice|file)$")
    required: bool = False
    options: list[str] = []


class FaqIn(BaseModel):
    question: str
    answer: str


class MediaIn(BaseModel):
    url: str
    public_id: Optional[str] = None


class GigIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=2000)
    category: GigCategory
    subcategory: str = Field(..., min_length=1)
    search_tags: list[str] = []
    pricing: PricingIn
    images: list[MediaIn] = []
    video: Optional[MediaIn] = None
    faqs: list[FaqIn] = []
    requirements: list[RequirementIn] = []


class GigUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    category: Optional[GigCategory] = None
    subcategory: Optional[str] = None
    search_tags: Optional[list[str]] = None
    pricing: Optional[PricingIn] = None
    images: Optional[list[MediaIn]] = None
    video: Optional[MediaIn] = None
    faqs: Optional[list[FaqIn]] = None
    requirements: Optional[list[RequirementIn]] = None
    is_paused: Optional[bool] = None

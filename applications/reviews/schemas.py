from typing import Optional

from pydantic import BaseModel, Field


class ReviewCategories(BaseModel):
    communication: Optional[int] = Field(None, ge=1, le=5)
    service_as_described: Optional[int] = Field(None, ge=1, le=5)
    buy_again: Optional[int] = Field(None, ge=1, le=5)


class ReviewIn(BaseModel):
    order_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=1000)
    categories: ReviewCategories = ReviewCategories()


class ReviewResponseIn(BaseModel):
    content: str = Field(..., min_length=1, max_length=500)


class ReviewReportIn(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)

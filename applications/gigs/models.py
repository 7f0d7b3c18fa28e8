import uuid
from decimal import Decimal
from enum import Enum

from tortoise import fields, models


class GigCategory(str, Enum):
    WEB_DEVELOPMENT = "web-development"
    MOBILE_DEVELOPMENT = "mobile-development"
    GRAPHIC_DESIGN = "graphic-design"
    DIGITAL_MARKETING = "digital-marketing"
    WRITING_TRANSLATION = "writing-translation"
    VIDEO_ANIMATION = "video-animation"
    MUSIC_AUDIO = "music-audio"
    PROGRAMMING_TECH = "programming-tech"
    BUSINESS = "business"
    LIFESTYLE = "lifestyle"


class PackageTier(str, Enum):
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"
    CUSTOM = "custom"


class Gig(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    freelancer = fields.ForeignKeyField("models.User", related_name="gigs")
    title = fields.CharField(max_length=100)
    description = fields.TextField()
    category = fields.CharEnumField(GigCategory, max_length=32)
    subcategory = fields.CharField(max_length=64)
    search_tags = fields.JSONField(default=list)

    # {"basic": {...}, "standard": {...} | None, "premium": {...} | None}
    pricing = fields.JSONField()
    starting_price = fields.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))

    images = fields.JSONField(default=list)
    video = fields.JSONField(null=True)
    faqs = fields.JSONField(default=list)
    requirements = fields.JSONField(default=list)

    rating = fields.FloatField(default=0)
    total_reviews = fields.IntField(default=0)
    total_orders = fields.IntField(default=0)
    impressions = fields.IntField(default=0)
    clicks = fields.IntField(default=0)

    is_active = fields.BooleanField(default=True)
    is_paused = fields.BooleanField(default=False)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "gigs"
        indexes = [
            ["category", "is_active", "is_paused"],
            ["starting_price"],
            ["rating"],
        ]

    def __str__(self):
        return self.title

    def package(self, tier: str) -> dict | None:
        tier = PackageTier(tier)
        if tier == PackageTier.CUSTOM:
            return None
        return (self.pricing or {}).get(tier.value)

    async def save(self, *args, **kwargs):
        basic = (self.pricing or {}).get(PackageTier.BASIC.value) or {}
        self.starting_price = Decimal(str(basic.get("price", 0)))
        await super().save(*args, **kwargs)

    def to_dict(self, freelancer=None) -> dict:
        data = {
            "id": str(self.id),
            "freelancer_id": self.freelancer_id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value if isinstance(self.category, Enum) else self.category,
            "subcategory": self.subcategory,
            "search_tags": self.search_tags,
            "pricing": self.pricing,
            "starting_price": self.starting_price,
            "images": self.images,
            "video": self.video,
            "faqs": self.faqs,
            "requirements": self.requirements,
            "rating": self.rating,
            "total_reviews": self.total_reviews,
            "total_orders": self.total_orders,
            "is_active": self.is_active,
            "is_paused": self.is_paused,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if freelancer is not None:
            data["freelancer"] = freelancer.to_public_dict()
        return data

from decimal import Decimal
from enum import Enum

from tortoise import fields, models
from passlib.hash import bcrypt
from app.utils.generate_unique import generate_unique


class UserRole(str, Enum):
    CLIENT = "client"
    FREELANCER = "freelancer"


class User(models.Model):
    id = fields.CharField(pk=True, max_length=60)
    username = fields.CharField(max_length=20, unique=True)
    email = fields.CharField(max_length=100, unique=True)
    password = fields.CharField(max_length=128)
    full_name = fields.CharField(max_length=100)
    role = fields.CharEnumField(UserRole, max_length=16)

    avatar = fields.CharField(max_length=255, default="")
    description = fields.TextField(default="")
    skills = fields.JSONField(default=list)
    languages = fields.JSONField(default=list)
    country = fields.CharField(max_length=64, default="")

    # denormalized, maintained by the review and order services
    rating = fields.FloatField(default=0)
    total_reviews = fields.IntField(default=0)
    total_earnings = fields.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"))
    completed_orders = fields.IntField(default=0)

    is_active = fields.BooleanField(default=True)
    is_verified = fields.BooleanField(default=False)
    is_online = fields.BooleanField(default=False)
    last_seen = fields.DatetimeField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    @classmethod
    def set_password(cls, password: str) -> str:
        return bcrypt.hash(password)

    def verify_password(self, password: str) -> bool:
        return bcrypt.verify(password, self.password)

    class Meta:
        table = "users"
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.username} ({self.role})"

    async def save(self, *args, **kwargs):
        if not self.id:
            text = "FRL" if self.role == UserRole.FREELANCER else "CLI"
            self.id = await generate_unique(User, text=text, max_length=12)
        if self.password and not self.password.startswith("$2b$"):
            self.password = self.set_password(self.password)

        await super().save(*args, **kwargs)

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "avatar": self.avatar,
            "role": self.role.value if isinstance(self.role, Enum) else self.role,
            "description": self.description,
            "skills": self.skills,
            "languages": self.languages,
            "country": self.country,
            "rating": self.rating,
            "total_reviews": self.total_reviews,
            "completed_orders": self.completed_orders,
            "is_online": self.is_online,
            "last_seen": self.last_seen,
            "created_at": self.created_at,
        }

    def to_dict(self) -> dict:
        return {
            **self.to_public_dict(),
            "email": self.email,
            "total_earnings": self.total_earnings,
            "is_verified": self.is_verified,
        }

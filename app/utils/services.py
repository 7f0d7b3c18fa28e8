import math
from typing import Type, TypeVar

from tortoise.exceptions import ValidationError as FieldValidationError
from tortoise.models import Model
from tortoise.queryset import QuerySet

from app.exceptions import NotFound

M = TypeVar("M", bound=Model)


async def get_or_404(model: Type[M], label: str | None = None, **filters) -> M:
    try:
        instance = await model.get_or_none(**filters)
    except (ValueError, FieldValidationError):
        # malformed ids (e.g. a non-uuid path segment) cannot match any row
        instance = None
    if instance is None:
        raise NotFound(f"{label or model.__name__} not found")
    return instance


async def paginate(queryset: QuerySet, page: int = 1, limit: int = 10) -> tuple[list, dict]:
    page = max(1, page)
    limit = max(1, limit)
    total = await queryset.count()
    items = await queryset.offset((page - 1) * limit).limit(limit)
    return items, {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit),
    }

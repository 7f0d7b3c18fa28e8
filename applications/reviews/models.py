import uuid

from tortoise import fields, models
from tortoise.validators import MaxValueValidator, MinValueValidator


def _score(**kwargs):
    return fields.IntField(validators=[MinValueValidator(1), MaxValueValidator(5)], **kwargs)


class Review(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    order = fields.ForeignKeyField("models.Order", related_name="reviews", on_delete=fields.CASCADE)
    # custom-offer orders have no gig
    gig = fields.ForeignKeyField("models.Gig", related_name="reviews", null=True, on_delete=fields.SET_NULL)
    reviewer = fields.ForeignKeyField("models.User", related_name="reviews_given")
    reviewee = fields.ForeignKeyField("models.User", related_name="reviews_received")

    rating = _score()
    comment = fields.TextField()
    # {communication, service_as_described, buy_again}, each 1..5
    categories = fields.JSONField(default=dict)

    is_public = fields.BooleanField(default=True)
    is_reported = fields.BooleanField(default=False)
    report_reason = fields.CharField(max_length=500, null=True)
    # {content, responded_at}
    response = fields.JSONField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "reviews"
        ordering = ["-created_at"]
        unique_together = (("order", "reviewer"),)
        indexes = [["gig_id", "created_at"], ["reviewee_id"], ["reviewer_id"]]

    def __str__(self):
        return f"{self.rating}* {self.reviewer_id} -> {self.reviewee_id}"

    def to_dict(self, reviewer=None) -> dict:
        data = {
            "id": str(self.id),
            "order_id": str(self.order_id),
            "gig_id": str(self.gig_id) if self.gig_id else None,
            "reviewer_id": self.reviewer_id,
            "reviewee_id": self.reviewee_id,
            "rating": self.rating,
            "comment": self.comment,
            "categories": self.categories,
            "is_public": self.is_public,
            "is_reported": self.is_reported,
            "response": self.response,
            "created_at": self.created_at,
        }
        if reviewer is not None:
            data["reviewer"] = {
                "id": reviewer.id,
                "username": reviewer.username,
                "full_name": reviewer.full_name,
                "avatar": reviewer.avatar,
            }
        return data

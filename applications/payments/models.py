from tortoise import fields, models


class PaymentEvent(models.Model):
    """Provider webhook event as received, kept for audit."""
    id = fields.IntField(pk=True)
    stripe_event_id = fields.CharField(max_length=100, null=True, index=True)
    type = fields.CharField(max_length=100)
    session_id = fields.CharField(max_length=255, null=True)
    payment_intent_id = fields.CharField(max_length=255, null=True)
    order = fields.ForeignKeyField("models.Order", related_name="payment_events", null=True, on_delete=fields.SET_NULL)
    # applied | duplicate | ignored | unmatched
    outcome = fields.CharField(max_length=20)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "payment_events"
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.type} ({self.outcome})"

"""Re-export all models so Base.metadata sees them."""

from app.db.models.plan import Plan
from app.db.models.subscription import Subscription
from app.db.models.user import User
from app.db.models.webhook_event import WebhookEvent

__all__ = [
    "Plan",
    "Subscription",
    "User",
    "WebhookEvent",
]

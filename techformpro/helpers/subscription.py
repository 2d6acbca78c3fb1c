from datetime import datetime, timedelta


def has_active_subscription(user, now=None):
    """Subscribed flag set and the end date (when there is one) not yet passed."""
    if not user or not user.get("is_subscribed"):
        return False
    end = user.get("subscription_end_date")
    return end is None or end > (now or datetime.utcnow())


def compute_end_date(plan, current_end=None, now=None):
    # An unexpired subscription is extended from its current end date
    now = now or datetime.utcnow()
    start = current_end if current_end and current_end > now else now
    return start + timedelta(days=plan["duration_days"])


def subscription_status(user, now=None):
    now = now or datetime.utcnow()
    end = user.get("subscription_end_date")
    days_left = None
    if end is not None:
        days_left = max(0, (end - now).days)
    return {
        "is_subscribed": has_active_subscription(user, now),
        "subscription_type": user.get("subscription_type"),
        "subscription_end_date": end,
        "days_left": days_left,
    }

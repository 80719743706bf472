from .models import Notification


class NotificationSink:
    """Writes notification records; one row per enqueue call."""

    def enqueue(self, user_id, type, payload):
        return Notification.objects.create(
            user_id=user_id,
            auction_id=payload.get('auction_id'),
            type=type,
            title=payload['title'],
            message=payload['message'],
            data=payload.get('data', {}),
        )

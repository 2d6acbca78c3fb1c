from flask import current_app

from techformpro.storage import get_storage


def notify(user_id, message, type):
    notification = get_storage().create_notification({
        "user_id": user_id,
        "message": message,
        "type": type,
    })
    current_app.logger.debug("Notification %s for user %s", type, user_id)
    return notification

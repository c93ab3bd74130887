"""
Domain errors for the notification subsystem.

Each error carries the HTTP status the API layer answers with; the
exception handlers in main.py turn them into the standard
``{success, message}`` envelope.
"""


class NotificationError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotificationValidationError(NotificationError):
    status_code = 400


class InvalidSchedule(NotificationValidationError):
    pass


class NotificationNotFound(NotificationError):
    status_code = 404

    def __init__(self, notification_id=None):
        super().__init__("Notification not found")
        self.notification_id = notification_id


class InvalidNotificationState(NotificationError):
    status_code = 400


class AlreadyTerminal(InvalidNotificationState):
    pass


class NotScheduled(InvalidNotificationState):
    pass


class Immutable(InvalidNotificationState):
    pass


class EmptyAudience(NotificationError):
    """Raised by the targeting resolver; never surfaces as an API error."""

    status_code = 400

    def __init__(self, notification_id=None):
        super().__init__("Notification has no active recipients")
        self.notification_id = notification_id

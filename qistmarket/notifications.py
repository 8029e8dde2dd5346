"""
Push notifications to officers' devices

Delivery is best effort: failures are logged and never reach the caller.
"""
import threading

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from qistmarket.logger_config import app_logger, log_error_with_context

ASSIGNMENT_TITLE = 'New Order Assigned'
FIREBASE_APP_NAME = 'qistmarket'


def init_firebase_app(config):
    """
    Firebase app from the service-account settings, or None when unconfigured

    FIREBASE_CREDENTIALS_FILE wins over the inline FIREBASE_PROJECT_ID /
    FIREBASE_CLIENT_EMAIL / FIREBASE_PRIVATE_KEY triple.
    """
    credentials_file = config.get('FIREBASE_CREDENTIALS_FILE')
    project_id = config.get('FIREBASE_PROJECT_ID')
    client_email = config.get('FIREBASE_CLIENT_EMAIL')
    private_key = config.get('FIREBASE_PRIVATE_KEY')

    if credentials_file:
        certificate = credentials.Certificate(credentials_file)
    elif project_id and client_email and private_key:
        certificate = credentials.Certificate({
            'type': 'service_account',
            'project_id': project_id,
            'client_email': client_email,
            # .env files carry the PEM with escaped newlines
            'private_key': private_key.replace('\\n', '\n'),
            'token_uri': 'https://oauth2.googleapis.com/token',
        })
    else:
        app_logger.info("Firebase credentials not configured; push notifications disabled")
        return None

    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        return firebase_admin.initialize_app(certificate, name=FIREBASE_APP_NAME)


class PushNotifier:
    """Sends FCM messages through the Firebase Admin SDK"""

    def __init__(self, firebase_app=None, run_async=True):
        self.firebase_app = firebase_app
        self.run_async = run_async
        self._threads = []
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config):
        return cls(
            firebase_app=init_firebase_app(config),
            run_async=config.get('NOTIFICATIONS_ASYNC', True),
        )

    def notify(self, device_token, title, body, data=None):
        """Deliver one message; returns True when FCM accepted it"""
        if self.firebase_app is None:
            app_logger.info(f"Push skipped (Firebase not configured): {title}")
            return False

        message = messaging.Message(
            token=device_token,
            notification=messaging.Notification(title=title, body=body),
            data={key: str(value) for key, value in (data or {}).items()},
        )
        try:
            message_id = messaging.send(message, app=self.firebase_app)
        except (exceptions.FirebaseError, ValueError) as e:
            log_error_with_context(e, {'action': 'push_notification', 'title': title})
            return False

        app_logger.info(f"Push sent: {title} ({message_id})")
        return True

    def notify_assignment(self, officer, order):
        """Tell an officer an order was assigned to them"""
        if not officer or not officer.fcm_token:
            app_logger.info(f"Push skipped for order {order.order_ref}: officer has no device token")
            return

        args = (
            officer.fcm_token,
            ASSIGNMENT_TITLE,
            f"Order {order.order_ref} has been assigned to you for verification.",
            {'order_id': order.id, 'order_ref': order.order_ref},
        )
        if not self.run_async:
            self._safe_notify(*args)
            return

        thread = threading.Thread(target=self._safe_notify, args=args, daemon=True)
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    def flush(self, timeout=None):
        """
        Wait for pushes still in flight

        Short-lived processes (CLI commands) call this before exiting, since
        daemon threads die with the interpreter.
        """
        with self._lock:
            pending, self._threads = self._threads, []
        for thread in pending:
            thread.join(timeout)

    def _safe_notify(self, *args):
        try:
            self.notify(*args)
        except Exception as e:
            log_error_with_context(e, {'action': 'push_notification'})

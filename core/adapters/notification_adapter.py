"""Adapter over the notification collaborator.

In production, delivery (push, email, in-app feed) belongs to a separate service.
Here we only persist the in-app row through the ledger store; the fee lifecycle
calls create() after its own transaction has committed.
"""

from ..ledger import LedgerStore
from ..models import NotificationType


class NotificationAdapter:
	"""
	create(user_id, title, message, type) is the whole contract the core relies on.
	"""

	provider_name = "in-app"

	def __init__(self, store: LedgerStore | None = None):
		self.store = store or LedgerStore()

	def create(self, user_id, title: str, message: str, type: str = NotificationType.INFO):
		if type not in NotificationType.values:
			raise ValueError(f"Unknown notification type: {type}")
		return self.store.create_notification(user_id=user_id, title=title, message=message, type=type)

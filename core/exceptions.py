"""Application errors raised by the ledger and the wallet fee lifecycle.

Insufficient funds during fee processing is not an error (it locks the wallet);
InsufficientFunds is only raised by explicit wallet operations.
"""

from decimal import Decimal


class WalletError(Exception):
	pass


class UserNotFound(WalletError):
	def __init__(self, user_id):
		self.user_id = user_id
		super().__init__(f"User {user_id} not found")


class WalletNotFound(WalletError):
	def __init__(self, user_id):
		self.user_id = user_id
		super().__init__(f"Wallet not found for user {user_id}")


class InsufficientFunds(WalletError):
	def __init__(self, user_id, balance: Decimal, required: Decimal):
		self.user_id = user_id
		self.balance = balance
		self.required = required
		super().__init__(f"Insufficient balance for user {user_id}: {balance:.2f} < {required:.2f}")


class WalletLocked(WalletError):
	"""
	Raised by the wallet action gate when the one-time fee is unpaid.
	"""
	def __init__(self, user_id, action: str, required_amount: Decimal, reason: str):
		self.user_id = user_id
		self.action = action
		self.required_amount = required_amount
		self.reason = reason
		super().__init__(reason)


class FeeReceiverMissing(WalletError):
	pass


class StorageFailure(WalletError):
	"""
	A database error aborted a fee unit; the unit was rolled back before this was raised.
	"""


class ImmutableTransactionError(WalletError):
	pass

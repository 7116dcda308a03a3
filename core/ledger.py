"""Ledger store: the only place that reads or writes the wallet tables.

Services receive a LedgerStore instance instead of touching the ORM directly, so a
test can hand in a store that fails at a chosen step. Every lock_* method must be
called inside transaction.atomic; row locks are released on commit/rollback.
"""

from django.db.models import Count, Q

from .exceptions import UserNotFound, WalletNotFound
from .models import (
	User, Wallet, Transaction, TransactionStatus, Referral, Staking, StakingStatus, Notification,
)


class LedgerStore:

	# --- Users -----------------------------------------------------------------

	def get_user(self, user_id) -> User:
		try:
			return User.objects.get(pk=user_id)
		except User.DoesNotExist:
			raise UserNotFound(user_id)

	def lock_user(self, user_id) -> User:
		"""
		SELECT ... FOR UPDATE on the user row; serializes fee processing per user.
		"""
		try:
			return User.objects.select_for_update().get(pk=user_id)
		except User.DoesNotExist:
			raise UserNotFound(user_id)

	def user_exists(self, user_id) -> bool:
		return User.objects.filter(pk=user_id).exists()

	def create_user(self, *, email: str, display_name: str = "", is_admin: bool = False, created_at=None) -> User:
		fields = dict(email=email.strip().lower(), display_name=display_name, is_admin=is_admin)
		if created_at is not None:
			fields["created_at"] = created_at
		return User.objects.create(**fields)

	def fee_lock_status(self, user_id):
		"""
		Return wallet_fee_locked for the user, or None when the user does not exist.
		"""
		return User.objects.filter(pk=user_id).values_list("wallet_fee_locked", flat=True).first()

	def schedule_due_date(self, user_id, due_at) -> bool:
		"""
		Set wallet_fee_due_at only where it is still NULL. Returns True if a row was written.
		"""
		return User.objects.filter(pk=user_id, wallet_fee_due_at__isnull=True).update(wallet_fee_due_at=due_at) == 1

	def users_without_due_date(self):
		return User.objects.filter(wallet_fee_due_at__isnull=True).order_by("created_at")

	def due_users(self, now):
		"""
		(id, email) of every user whose fee is due and not yet processed, oldest due date first.
		"""
		return list(
			User.objects.filter(wallet_fee_due_at__lte=now, wallet_fee_processed=False)
			.order_by("wallet_fee_due_at")
			.values_list("id", "email")
		)

	def mark_waived(self, user: User, now):
		user.wallet_fee_waived = True
		user.wallet_fee_processed = True
		user.wallet_fee_locked = False
		user.wallet_fee_processed_at = now
		user.save(update_fields=["wallet_fee_waived", "wallet_fee_processed", "wallet_fee_locked", "wallet_fee_processed_at", "updated_at"])

	def mark_locked(self, user: User):
		# processed stays False so the next batch run retries
		user.wallet_fee_locked = True
		user.save(update_fields=["wallet_fee_locked", "updated_at"])

	def mark_charged(self, user: User, now):
		user.wallet_fee_processed = True
		user.wallet_fee_locked = False
		user.wallet_fee_processed_at = now
		user.save(update_fields=["wallet_fee_processed", "wallet_fee_locked", "wallet_fee_processed_at", "updated_at"])

	def fee_receiver_id(self, exclude_user_id=None):
		"""
		Owner of the first admin wallet (oldest admin first), never the payer themself.
		"""
		qs = Wallet.objects.filter(user__is_admin=True)
		if exclude_user_id is not None:
			qs = qs.exclude(user_id=exclude_user_id)
		return qs.order_by("user__created_at", "user_id").values_list("user_id", flat=True).first()

	def fee_stats(self, now) -> dict:
		return User.objects.aggregate(
			overdue=Count("id", filter=Q(wallet_fee_due_at__lte=now, wallet_fee_processed=False)),
			pending=Count("id", filter=Q(wallet_fee_due_at__gt=now, wallet_fee_processed=False)),
			waived=Count("id", filter=Q(wallet_fee_processed=True, wallet_fee_waived=True)),
			charged=Count("id", filter=Q(wallet_fee_processed=True, wallet_fee_waived=False)),
			locked=Count("id", filter=Q(wallet_fee_locked=True)),
		)

	# --- Wallets ---------------------------------------------------------------

	def create_wallet(self, user: User) -> Wallet:
		return Wallet.objects.create(user=user)

	def get_wallet(self, user_id) -> Wallet:
		try:
			return Wallet.objects.get(user_id=user_id)
		except Wallet.DoesNotExist:
			raise WalletNotFound(user_id)

	def lock_wallet(self, user_id) -> Wallet:
		try:
			return Wallet.objects.select_for_update().get(user_id=user_id)
		except Wallet.DoesNotExist:
			raise WalletNotFound(user_id)

	def lock_wallets(self, user_ids) -> dict:
		"""
		Lock several wallets in primary-key order (consistent order avoids deadlocks).
		Returns {user_id: Wallet}; raises WalletNotFound for the first missing owner.
		"""
		wanted = [uid for uid in user_ids if uid is not None]
		wallets = {w.user_id: w for w in Wallet.objects.select_for_update().filter(user_id__in=wanted).order_by("pk")}
		for uid in wanted:
			if uid not in wallets:
				raise WalletNotFound(uid)
		return wallets

	def set_balance(self, wallet: Wallet, new_balance, now):
		wallet.balance = new_balance
		wallet.last_updated = now
		wallet.save(update_fields=["balance", "last_updated"])

	# --- Transactions ----------------------------------------------------------

	def record_transaction(self, **fields) -> Transaction:
		fields.setdefault("status", TransactionStatus.COMPLETED)
		return Transaction.objects.create(**fields)

	def transactions_for(self, user_id, limit: int = 50):
		return Transaction.objects.filter(user_id=user_id).order_by("-created_at")[:limit]

	# --- Referrals & staking ---------------------------------------------------

	def create_referral(self, *, referrer: User, referred: User) -> Referral:
		return Referral.objects.create(referrer=referrer, referred=referred)

	def referred_user_ids(self, referrer_id):
		return list(
			Referral.objects.filter(referrer_id=referrer_id).order_by("created_at", "id").values_list("referred_id", flat=True)
		)

	def referrer_id_of(self, user_id):
		return Referral.objects.filter(referred_id=user_id).values_list("referrer_id", flat=True).first()

	def has_qualifying_stake(self, user_id, minimum, cutoff) -> bool:
		return Staking.objects.filter(user_id=user_id, amount_staked__gte=minimum, created_at__lte=cutoff).exists()

	def create_staking(self, **fields) -> Staking:
		fields.setdefault("status", StakingStatus.ACTIVE)
		return Staking.objects.create(**fields)

	# --- Notifications ---------------------------------------------------------

	def create_notification(self, *, user_id, title: str, message: str, type: str) -> Notification:
		return Notification.objects.create(user_id=user_id, title=title, message=message, type=type)

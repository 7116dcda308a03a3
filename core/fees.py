"""One-time wallet fee lifecycle.

A user gets FREE_TRIAL_DAYS free; on the due date the fee is either waived (one of
their referrals staked at least MINIMUM_REFERRAL_STAKE before the due date),
charged (balance covers it) or the wallet is locked until a top-up.

Every state change for a user runs inside one transaction.atomic block that starts
by locking the user row, so two concurrent attempts for the same user cannot both
pass the balance check. Notifications go out after the block has committed.

There is no retry loop: locked and failed users are picked up again by the next
scheduled batch run, and a deposit into a locked wallet re-runs the processor.
"""

import logging
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from django.db import transaction, DatabaseError
from django.utils import timezone

from .adapters.notification_adapter import NotificationAdapter
from .constants import (
	wallet_fee_amount, wallet_fee_currency, free_trial_days, minimum_referral_stake, require_fee_receiver,
)
from .exceptions import FeeReceiverMissing, StorageFailure, UserNotFound, WalletLocked
from .ledger import LedgerStore
from .models import User, TransactionType, TransactionStatus, NotificationType

logger = logging.getLogger(__name__)

# Outcome statuses
PENDING = "pending"
WAIVED = "waived"
CHARGED = "charged"
LOCKED = "locked"
ERROR = "error"

ZERO = Decimal("0.00")


class WalletAction(str, Enum):
	WITHDRAW = "WITHDRAW"
	TRANSFER = "TRANSFER"
	BUY = "BUY"
	SELL = "SELL"
	STAKE = "STAKE"


def _usd(amount: Decimal) -> str:
	return f"${amount:.2f}"


@dataclass
class FeeOutcome:
	user_id: object
	status: str
	message: str
	already_processed: bool = False
	exemption_met: bool = False
	due_date: Optional[datetime] = None
	fee_amount: Optional[Decimal] = None
	previous_balance: Optional[Decimal] = None
	new_balance: Optional[Decimal] = None
	current_balance: Optional[Decimal] = None
	required_amount: Optional[Decimal] = None
	transaction_id: Optional[object] = None

	def as_dict(self) -> dict:
		return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class BatchSummary:
	total: int = 0
	charged: int = 0
	waived: int = 0
	locked: int = 0
	errors: int = 0
	details: list = field(default_factory=list)

	def as_dict(self) -> dict:
		return asdict(self)


@dataclass
class ActionCheck:
	allowed: bool
	reason: Optional[str] = None
	required_amount: Optional[Decimal] = None

	def as_dict(self) -> dict:
		return {k: v for k, v in asdict(self).items() if v is not None}


class ReferralExemptionEvaluator:
	"""
	Read-only: did any user referred by referrer_id stake at least the minimum
	on or before the cutoff date.
	"""

	def __init__(self, store: LedgerStore | None = None, minimum_stake: Decimal | None = None):
		self.store = store or LedgerStore()
		self.minimum_stake = minimum_stake if minimum_stake is not None else minimum_referral_stake()

	def check(self, referrer_id, cutoff_date: datetime) -> bool:
		if not self.store.user_exists(referrer_id):
			raise UserNotFound(referrer_id)

		referred_ids = self.store.referred_user_ids(referrer_id)
		if not referred_ids:
			logger.debug("No referrals found for user %s", referrer_id)
			return False

		for referred_id in referred_ids:
			if self.store.has_qualifying_stake(referred_id, self.minimum_stake, cutoff_date):
				logger.info("Referral exemption met for user %s: referred user %s staked >= %s", referrer_id, referred_id, self.minimum_stake)
				return True

		logger.debug("Referral exemption not met for user %s", referrer_id)
		return False


class WalletFeeProcessor:
	"""
	Single-user state machine plus the scheduling / waiver / status helpers around it.

	Collaborators are injected; defaults talk to the Django ORM and the in-app notifier.
	"""

	def __init__(
		self,
		store: LedgerStore | None = None,
		notifier: NotificationAdapter | None = None,
		clock: Callable[[], datetime] | None = None,
		evaluator: ReferralExemptionEvaluator | None = None,
		fee_amount: Decimal | None = None,
		trial_days: int | None = None,
		require_receiver: bool | None = None,
	):
		self.store = store or LedgerStore()
		self.notifier = notifier or NotificationAdapter(self.store)
		self.clock = clock or timezone.now
		self.evaluator = evaluator or ReferralExemptionEvaluator(self.store)
		self.fee_amount = fee_amount if fee_amount is not None else wallet_fee_amount()
		self.trial_days = trial_days if trial_days is not None else free_trial_days()
		self.require_receiver = require_receiver if require_receiver is not None else require_fee_receiver()
		self.currency = wallet_fee_currency()

	# --- Scheduling ------------------------------------------------------------

	def schedule_wallet_fee(self, user: User) -> datetime:
		"""
		Persist due = created_at + trial days. An existing due date is kept, never overwritten.
		"""
		due = user.created_at + timedelta(days=self.trial_days)
		if self.store.schedule_due_date(user.pk, due):
			user.wallet_fee_due_at = due
			logger.info("Wallet fee scheduled for user %s on %s", user.pk, due.isoformat())
			return due

		existing = self.store.get_user(user.pk).wallet_fee_due_at
		logger.warning("Wallet fee for user %s already scheduled on %s; keeping it", user.pk, existing.isoformat())
		user.wallet_fee_due_at = existing
		return existing

	def initialize_wallet_fees(self) -> dict:
		"""
		Backfill: schedule every user created before the fee system existed.
		"""
		users = list(self.store.users_without_due_date())
		result = {"total": len(users), "updated": 0, "errors": 0}
		for user in users:
			try:
				self.schedule_wallet_fee(user)
				result["updated"] += 1
			except DatabaseError:
				logger.exception("Could not schedule wallet fee for user %s", user.pk)
				result["errors"] += 1
		return result

	# --- Processing ------------------------------------------------------------

	def check_referral_exemption(self, referrer_id, cutoff_date: datetime) -> bool:
		return self.evaluator.check(referrer_id, cutoff_date)

	def process_wallet_fee_for_user(self, user_id) -> FeeOutcome:
		"""
		Evaluate, in order: already processed → not yet due → referral exemption →
		insufficient balance (lock) → charge. The whole decision is one atomic unit.
		"""
		now = self.clock()
		notice = None
		try:
			with transaction.atomic():
				user = self.store.lock_user(user_id)

				if user.wallet_fee_processed:
					return FeeOutcome(
						user_id=user.pk,
						status=WAIVED if user.wallet_fee_waived else CHARGED,
						message="Wallet fee already processed",
						already_processed=True,
					)

				due = user.wallet_fee_due_at
				if due is None or due > now:
					return FeeOutcome(user_id=user.pk, status=PENDING, message="Wallet fee not yet due", due_date=due)

				if self.evaluator.check(user.pk, due):
					outcome, notice = self._waive(user, now)
				else:
					outcome, notice = self._charge_or_lock(user, now)
		except DatabaseError as exc:
			logger.error("Wallet fee unit for user %s rolled back: %s", user_id, exc)
			raise StorageFailure(f"Storage failure while processing wallet fee for user {user_id}: {exc}") from exc

		logger.info("Wallet fee for user %s: %s", outcome.user_id, outcome.status)
		if notice:
			self._notify(outcome.user_id, *notice)
		return outcome

	def _waive(self, user: User, now):
		self.store.mark_waived(user, now)
		notice = (
			"Wallet Fee Waived!",
			f"Congratulations! Your wallet fee has been waived because you referred a user who staked at least "
			f"{_usd(self.evaluator.minimum_stake)} within {self.trial_days} days.",
			NotificationType.SUCCESS,
		)
		outcome = FeeOutcome(
			user_id=user.pk, status=WAIVED, message="Wallet fee waived due to referral exemption", exemption_met=True,
		)
		return outcome, notice

	def _charge_or_lock(self, user: User, now):
		fee = self.fee_amount
		receiver_id = self.store.fee_receiver_id(exclude_user_id=user.pk)
		wallets = self.store.lock_wallets([user.pk, receiver_id])
		wallet = wallets[user.pk]
		balance = wallet.balance

		if balance < fee:
			was_locked = user.wallet_fee_locked
			self.store.mark_locked(user)
			logger.warning("Wallet locked for user %s: balance %s below fee %s", user.pk, balance, fee)
			notice = None
			if not was_locked:
				notice = (
					"Wallet Locked - Payment Required",
					f"Your wallet has been locked because the {_usd(fee)} wallet fee is due but you have insufficient balance. "
					f"Please deposit at least {_usd(fee)} to unlock your wallet.",
					NotificationType.WARNING,
				)
			outcome = FeeOutcome(
				user_id=user.pk, status=LOCKED, message="Wallet locked due to insufficient balance",
				current_balance=balance, required_amount=fee,
			)
			return outcome, notice

		if receiver_id is None and self.require_receiver:
			# nothing has been written in this unit yet; the user stays due for the next run
			raise FeeReceiverMissing(f"No admin wallet can receive the wallet fee for user {user.pk}; charge refused")

		new_balance = balance - fee
		self.store.set_balance(wallet, new_balance, now)

		if receiver_id is not None:
			receiver_wallet = wallets[receiver_id]
			self.store.set_balance(receiver_wallet, receiver_wallet.balance + fee, now)
		else:
			logger.warning("Wallet fee %s from user %s recorded without a receiver wallet; reconciliation required", fee, user.pk)

		tx = self.store.record_transaction(
			user=user,
			type=TransactionType.WALLET_FEE,
			amount=fee,
			currency=self.currency,
			status=TransactionStatus.COMPLETED,
			description=f"One-time wallet fee after {self.trial_days}-day trial period",
			fee_amount=fee,
			fee_receiver_id=receiver_id,
			net_amount=ZERO,
			created_at=now,
		)
		self.store.mark_charged(user, now)

		notice = (
			"Wallet Fee Charged",
			f"A one-time wallet fee of {_usd(fee)} has been deducted from your wallet. Your new balance is {_usd(new_balance)}.",
			NotificationType.INFO,
		)
		outcome = FeeOutcome(
			user_id=user.pk, status=CHARGED, message="Wallet fee successfully charged",
			fee_amount=fee, previous_balance=balance, new_balance=new_balance, transaction_id=tx.pk,
		)
		return outcome, notice

	def handle_referral_fee_waiver(self, referrer_id) -> bool:
		"""
		Called when a referred user makes a qualifying stake: waive right away if the
		referrer is still inside the trial. Returns False when there is nothing to waive.
		"""
		now = self.clock()
		try:
			with transaction.atomic():
				try:
					user = self.store.lock_user(referrer_id)
				except UserNotFound:
					logger.info("Referral waiver skipped: user %s not found", referrer_id)
					return False

				due = user.wallet_fee_due_at
				if user.wallet_fee_processed or due is None or due <= now:
					return False

				self.store.mark_waived(user, now)
		except DatabaseError as exc:
			raise StorageFailure(f"Storage failure while waiving wallet fee for user {referrer_id}: {exc}") from exc

		logger.info("Wallet fee waived early for referrer %s", referrer_id)
		self._notify(
			user.pk,
			"Wallet Fee Waived!",
			f"Congratulations! Your wallet fee has been waived because your referral staked at least {_usd(self.evaluator.minimum_stake)}.",
			NotificationType.SUCCESS,
		)
		return True

	def _notify(self, user_id, title: str, message: str, type: str):
		# fee state is already committed; a failed notification must not undo it
		try:
			with transaction.atomic():
				self.notifier.create(user_id, title, message, type)
		except Exception:
			logger.exception("Notification %r for user %s failed", title, user_id)

	# --- Reads -----------------------------------------------------------------

	def get_wallet_fee_status(self, user_id) -> dict:
		user = self.store.get_user(user_id)
		now = self.clock()
		days_remaining = 0
		if user.wallet_fee_due_at and not user.wallet_fee_processed:
			seconds = (user.wallet_fee_due_at - now).total_seconds()
			days_remaining = max(0, math.ceil(seconds / 86400))
		return {
			"user_id": user.pk,
			"wallet_fee_due_at": user.wallet_fee_due_at,
			"wallet_fee_processed": user.wallet_fee_processed,
			"wallet_fee_waived": user.wallet_fee_waived,
			"wallet_fee_locked": user.wallet_fee_locked,
			"wallet_fee_processed_at": user.wallet_fee_processed_at,
			"days_remaining": days_remaining,
			"is_pending": days_remaining > 0,
			"fee_amount": self.fee_amount,
		}

	def wallet_fee_stats(self) -> dict:
		return self.store.fee_stats(self.clock())


class BatchFeeRunner:
	"""
	Sweep every due, unprocessed fee. One user's failure never stops the run.
	"""

	def __init__(self, processor: WalletFeeProcessor | None = None):
		self.processor = processor or WalletFeeProcessor()

	def process_all_due_wallet_fees(self) -> BatchSummary:
		now = self.processor.clock()
		try:
			due = self.processor.store.due_users(now)
		except DatabaseError as exc:
			raise StorageFailure(f"Storage failure while selecting due wallet fees: {exc}") from exc
		logger.info("Found %d users with due wallet fees", len(due))

		summary = BatchSummary(total=len(due))
		for user_id, email in due:
			try:
				outcome = self.processor.process_wallet_fee_for_user(user_id)
			except Exception as exc:
				# Log and continue; the user is re-selected by the next run
				logger.exception("Error processing wallet fee for user %s", user_id)
				summary.errors += 1
				summary.details.append({"user_id": user_id, "email": email, "status": ERROR, "message": str(exc)})
				continue

			if outcome.status == CHARGED:
				summary.charged += 1
			elif outcome.status == WAIVED:
				summary.waived += 1
			elif outcome.status == LOCKED:
				summary.locked += 1
			summary.details.append({"user_id": user_id, "email": email, "status": outcome.status, "message": outcome.message})

		logger.info(
			"Wallet fee run complete: total=%d charged=%d waived=%d locked=%d errors=%d",
			summary.total, summary.charged, summary.waived, summary.locked, summary.errors,
		)
		return summary


class WalletActionGate:
	"""
	Precondition for every wallet-mutating action. Never mutates state.
	"""

	def __init__(self, store: LedgerStore | None = None, fee_amount: Decimal | None = None):
		self.store = store or LedgerStore()
		self.fee_amount = fee_amount if fee_amount is not None else wallet_fee_amount()

	def check_wallet_action_allowed(self, user_id) -> ActionCheck:
		locked = self.store.fee_lock_status(user_id)
		if locked is None:
			return ActionCheck(allowed=False, reason="User not found")
		if locked:
			return ActionCheck(
				allowed=False,
				reason=f"Wallet locked - please deposit {_usd(self.fee_amount)} to unlock",
				required_amount=self.fee_amount,
			)
		return ActionCheck(allowed=True)

	def require_wallet_action_allowed(self, user_id, action: WalletAction):
		check = self.check_wallet_action_allowed(user_id)
		if check.allowed:
			return
		if check.required_amount is None:
			raise UserNotFound(user_id)
		logger.info("Blocked %s for user %s: wallet fee lock", WalletAction(action).value, user_id)
		raise WalletLocked(user_id, WalletAction(action).value, check.required_amount, check.reason)


# --- Entry points ------------------------------------------------------------
# Each call builds its collaborators fresh; nothing is cached at module level.

def schedule_wallet_fee(user: User) -> datetime:
	return WalletFeeProcessor().schedule_wallet_fee(user)


def check_referral_exemption(referrer_id, cutoff_date: datetime) -> bool:
	return ReferralExemptionEvaluator().check(referrer_id, cutoff_date)


def process_wallet_fee_for_user(user_id) -> FeeOutcome:
	return WalletFeeProcessor().process_wallet_fee_for_user(user_id)


def process_all_due_wallet_fees() -> BatchSummary:
	"""
	Batch trigger for the external scheduler (cron).
	"""
	return BatchFeeRunner().process_all_due_wallet_fees()


def check_wallet_action_allowed(user_id) -> ActionCheck:
	return WalletActionGate().check_wallet_action_allowed(user_id)


def handle_referral_fee_waiver(referrer_id) -> bool:
	return WalletFeeProcessor().handle_referral_fee_waiver(referrer_id)

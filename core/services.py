"""Wallet operations: signup, deposit, withdraw, transfer, stake.

Every balance mutation is wrapped in transaction.atomic and reads the balance it
writes under select_for_update. Gated operations ask the wallet action gate first,
so a fee-locked wallet can only receive deposits.
"""

import logging
from datetime import timedelta
from decimal import Decimal

from django.db import transaction, IntegrityError
from django.utils import timezone

from .constants import to_money, minimum_referral_stake
from .exceptions import InsufficientFunds, UserNotFound, WalletError
from .fees import WalletAction, WalletActionGate, WalletFeeProcessor, FeeOutcome
from .ledger import LedgerStore
from .models import User, Transaction, TransactionType, Staking

logger = logging.getLogger(__name__)


def _positive(amount) -> Decimal:
	value = to_money(amount)
	if value <= 0:
		raise ValueError("Amount must be > 0")
	return value


class WalletServices:
	"""
	Entry points used by the API views. Collaborators are injected like the fee components.
	"""

	def __init__(self, store: LedgerStore | None = None, gate: WalletActionGate | None = None, fees: WalletFeeProcessor | None = None):
		self.store = store or LedgerStore()
		self.gate = gate or WalletActionGate(self.store)
		self.fees = fees or WalletFeeProcessor(self.store)

	def register_user(self, email: str, display_name: str = "", referrer_id=None, is_admin: bool = False) -> User:
		"""
		Create user + empty wallet (+ referral link), then schedule the wallet fee.
		"""
		with transaction.atomic():
			referrer = self.store.get_user(referrer_id) if referrer_id else None
			try:
				user = self.store.create_user(email=email, display_name=display_name, is_admin=is_admin)
			except IntegrityError:
				raise ValueError(f"Email already registered: {email}")
			self.store.create_wallet(user)
			if referrer is not None:
				self.store.create_referral(referrer=referrer, referred=user)
			self.fees.schedule_wallet_fee(user)
		logger.info("Registered user %s (referrer=%s)", user.pk, referrer_id)
		return user

	def deposit(self, user_id, amount, memo: str = "") -> tuple[Transaction, FeeOutcome | None]:
		"""
		Credit the wallet. Deposits are never gated: topping up is how a locked wallet
		gets unlocked, so a locked user's fee is re-processed right after the commit.
		"""
		amount = _positive(amount)
		now = timezone.now()
		with transaction.atomic():
			user = self.store.get_user(user_id)
			wallet = self.store.lock_wallet(user.pk)
			self.store.set_balance(wallet, wallet.balance + amount, now)
			tx = self.store.record_transaction(
				user=user, type=TransactionType.DEPOSIT, amount=amount, net_amount=amount,
				description=memo or "Deposit", created_at=now,
			)

		outcome = None
		if user.wallet_fee_locked:
			try:
				outcome = self.fees.process_wallet_fee_for_user(user.pk)
			except WalletError:
				# The deposit stands; the next batch run retries the fee
				logger.exception("Wallet fee re-run after deposit %s failed for user %s", tx.pk, user.pk)
		return tx, outcome

	def withdraw(self, user_id, amount, memo: str = "") -> Transaction:
		amount = _positive(amount)
		self.gate.require_wallet_action_allowed(user_id, WalletAction.WITHDRAW)
		now = timezone.now()
		with transaction.atomic():
			user = self.store.get_user(user_id)
			wallet = self.store.lock_wallet(user.pk)
			if wallet.balance < amount:
				raise InsufficientFunds(user.pk, wallet.balance, amount)
			self.store.set_balance(wallet, wallet.balance - amount, now)
			return self.store.record_transaction(
				user=user, type=TransactionType.WITHDRAWAL, amount=amount, net_amount=amount,
				description=memo or "Withdrawal", created_at=now,
			)

	def transfer(self, sender_id, receiver_id, amount, memo: str = "") -> Transaction:
		amount = _positive(amount)
		self.gate.require_wallet_action_allowed(sender_id, WalletAction.TRANSFER)
		now = timezone.now()
		with transaction.atomic():
			sender = self.store.get_user(sender_id)
			receiver = self.store.get_user(receiver_id)
			if sender.pk == receiver.pk:
				raise ValueError("Cannot transfer to yourself")
			wallets = self.store.lock_wallets([sender.pk, receiver.pk])
			src, dst = wallets[sender.pk], wallets[receiver.pk]
			if src.balance < amount:
				raise InsufficientFunds(sender.pk, src.balance, amount)
			self.store.set_balance(src, src.balance - amount, now)
			self.store.set_balance(dst, dst.balance + amount, now)
			return self.store.record_transaction(
				user=sender, counterparty=receiver, type=TransactionType.TRANSFER, amount=amount, net_amount=amount,
				description=memo or f"Transfer to {receiver.email}", created_at=now,
			)

	def stake(self, user_id, amount, duration_days: int, reward_percent="0") -> Staking:
		"""
		Lock funds into a staking position. A qualifying stake by a referred user
		waives the referrer's fee while the referrer is still inside the trial.
		"""
		amount = _positive(amount)
		duration_days = int(duration_days)
		if duration_days <= 0:
			raise ValueError("duration_days must be > 0")
		self.gate.require_wallet_action_allowed(user_id, WalletAction.STAKE)
		now = timezone.now()
		with transaction.atomic():
			user = self.store.get_user(user_id)
			wallet = self.store.lock_wallet(user.pk)
			if wallet.balance < amount:
				raise InsufficientFunds(user.pk, wallet.balance, amount)
			self.store.set_balance(wallet, wallet.balance - amount, now)
			staking = self.store.create_staking(
				user=user, amount_staked=amount, duration_days=duration_days,
				reward_percent=to_money(reward_percent), start_date=now,
				end_date=now + timedelta(days=duration_days), created_at=now,
			)
			self.store.record_transaction(
				user=user, type=TransactionType.STAKE, amount=amount, net_amount=amount,
				description=f"Staked for {duration_days} days", created_at=now,
			)

		if amount >= minimum_referral_stake():
			referrer_id = self.store.referrer_id_of(user.pk)
			if referrer_id is not None:
				try:
					self.fees.handle_referral_fee_waiver(referrer_id)
				except WalletError:
					logger.exception("Referral fee waiver for %s after stake %s failed", referrer_id, staking.pk)
		return staking

	def balance(self, user_id) -> Decimal:
		if not self.store.user_exists(user_id):
			raise UserNotFound(user_id)
		return self.store.get_wallet(user_id).balance

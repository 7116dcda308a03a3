"""Database models for the wallet ledger.


Tables:
- User: platform identity plus the wallet fee lifecycle flags
- Wallet: one USD balance per user (never negative)
- TransactionType / TransactionStatus
- Transaction: append-only history of every balance mutation (immutable once COMPLETED)
- Referral: who referred whom (each user is referred at most once)
- StakingStatus
- Staking: staked positions; read by the referral exemption check
- NotificationType
- Notification: in-app messages created by the fee lifecycle
"""

import uuid
from decimal import Decimal
from django.db import models
from django.db.models import Q
from django.utils import timezone

from .exceptions import ImmutableTransactionError


class User(models.Model):
	"""
	Account holder. The wallet_fee_* columns drive the one-time fee state machine.
	"""
	id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
	email = models.EmailField(unique=True)
	display_name = models.CharField(max_length=200, blank=True, default="")
	is_admin = models.BooleanField(default=False) # admin wallets receive collected fees
	created_at = models.DateTimeField(default=timezone.now)
	updated_at = models.DateTimeField(auto_now=True)

	wallet_fee_due_at = models.DateTimeField(null=True, blank=True)
	wallet_fee_processed = models.BooleanField(default=False)
	wallet_fee_waived = models.BooleanField(default=False)
	wallet_fee_locked = models.BooleanField(default=False)
	wallet_fee_processed_at = models.DateTimeField(null=True, blank=True)

	class Meta:
		indexes = [
			models.Index(fields=["wallet_fee_processed", "wallet_fee_due_at"]),
		]
		constraints = [
			# waived and locked are mutually exclusive outcomes
			models.CheckConstraint(
				condition=~Q(wallet_fee_waived=True, wallet_fee_locked=True),
				name="user_fee_waived_not_locked",
			),
		]

	def __str__(self):
		return self.email


class Wallet(models.Model):
	"""
	Custodial USD balance. Mutated only under select_for_update inside transaction.atomic.
	"""
	id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
	user = models.OneToOneField(User, on_delete=models.CASCADE, related_name="wallet")
	balance = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal("0.00"))
	last_updated = models.DateTimeField(default=timezone.now)
	created_at = models.DateTimeField(auto_now_add=True)

	class Meta:
		constraints = [
			models.CheckConstraint(condition=Q(balance__gte=0), name="wallet_balance_non_negative"),
		]

	def __str__(self):
		return f"Wallet({self.user_id}: {self.balance:.2f})"


class TransactionType(models.TextChoices):
	DEPOSIT = "DEPOSIT", "Deposit"
	WITHDRAWAL = "WITHDRAWAL", "Withdrawal"
	TRANSFER = "TRANSFER", "Transfer"
	BUY = "BUY", "Buy"
	SELL = "SELL", "Sell"
	STAKE = "STAKE", "Stake"
	WALLET_FEE = "WALLET_FEE", "Wallet fee"


class TransactionStatus(models.TextChoices):
	PENDING = "PENDING", "Pending"
	COMPLETED = "COMPLETED", "Completed"
	FAILED = "FAILED", "Failed"


class TransactionQuerySet(models.QuerySet):

	def update(self, **kwargs):
		if self.filter(status=TransactionStatus.COMPLETED).exists():
			raise ImmutableTransactionError("Completed transactions cannot be modified")
		return super().update(**kwargs)


class Transaction(models.Model):
	"""
	One row per ledger mutation.

	A COMPLETED row is never updated again; corrections are new rows. Both save()
	and queryset update() enforce this. Raw SQL does not go through either.
	"""
	objects = TransactionQuerySet.as_manager()

	id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
	user = models.ForeignKey(User, on_delete=models.PROTECT, related_name="transactions")
	type = models.CharField(max_length=16, choices=TransactionType.choices)
	amount = models.DecimalField(max_digits=18, decimal_places=2)
	currency = models.CharField(max_length=10, default="USD")
	status = models.CharField(max_length=16, choices=TransactionStatus.choices, default=TransactionStatus.PENDING)
	description = models.TextField(blank=True, default="")
	fee_amount = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal("0.00"))
	fee_receiver = models.ForeignKey(User, null=True, blank=True, on_delete=models.PROTECT, related_name="fees_received")
	net_amount = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal("0.00"))
	counterparty = models.ForeignKey(User, null=True, blank=True, on_delete=models.PROTECT, related_name="incoming_transactions")
	created_at = models.DateTimeField(default=timezone.now)
	updated_at = models.DateTimeField(auto_now=True)

	class Meta:
		indexes = [
			models.Index(fields=["user", "type", "status"]),
			models.Index(fields=["user", "created_at"]),
		]

	def save(self, *args, **kwargs):
		if not self._state.adding and Transaction.objects.filter(
			pk=self.pk, status=TransactionStatus.COMPLETED
		).exists():
			raise ImmutableTransactionError(f"Transaction {self.pk} is completed and cannot be modified")
		super().save(*args, **kwargs)


class Referral(models.Model):
	"""
	referrer brought referred onto the platform. Read-only for the fee lifecycle.
	"""
	id = models.BigAutoField(primary_key=True)
	referrer = models.ForeignKey(User, on_delete=models.CASCADE, related_name="referrals_made")
	referred = models.OneToOneField(User, on_delete=models.CASCADE, related_name="referral_source")
	created_at = models.DateTimeField(default=timezone.now)


class StakingStatus(models.TextChoices):
	ACTIVE = "ACTIVE", "Active"
	COMPLETED = "COMPLETED", "Completed"
	CANCELLED = "CANCELLED", "Cancelled"


class Staking(models.Model):
	"""
	A staked position. Rewards are computed elsewhere; here it is only a signal.
	"""
	id = models.BigAutoField(primary_key=True)
	user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="stakings")
	amount_staked = models.DecimalField(max_digits=18, decimal_places=2)
	duration_days = models.IntegerField()
	reward_percent = models.DecimalField(max_digits=6, decimal_places=2, default=Decimal("0.00"))
	start_date = models.DateTimeField(default=timezone.now)
	end_date = models.DateTimeField()
	status = models.CharField(max_length=16, choices=StakingStatus.choices, default=StakingStatus.ACTIVE)
	created_at = models.DateTimeField(default=timezone.now)

	class Meta:
		indexes = [
			models.Index(fields=["user", "created_at"]),
		]


class NotificationType(models.TextChoices):
	INFO = "INFO", "Info"
	SUCCESS = "SUCCESS", "Success"
	WARNING = "WARNING", "Warning"


class Notification(models.Model):
	id = models.BigAutoField(primary_key=True)
	user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="notifications")
	title = models.CharField(max_length=200)
	message = models.TextField()
	type = models.CharField(max_length=16, choices=NotificationType.choices, default=NotificationType.INFO)
	is_read = models.BooleanField(default=False)
	created_at = models.DateTimeField(auto_now_add=True)

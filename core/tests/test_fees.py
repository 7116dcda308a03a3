"""
Unit tests for the wallet fee lifecycle

Tests cover:
1. Fee scheduling at signup
2. Referral exemption lookups
3. The single-user state machine (pending / waived / charged / locked)
4. Idempotence and the no-double-charge invariant
5. Rollback on storage failure
"""

from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from django.db import DatabaseError

from core.exceptions import (
	FeeReceiverMissing, ImmutableTransactionError, StorageFailure, UserNotFound, WalletNotFound,
)
from core.fees import (
	WalletFeeProcessor, ReferralExemptionEvaluator, CHARGED, LOCKED, PENDING, WAIVED,
	check_referral_exemption, process_wallet_fee_for_user, schedule_wallet_fee,
)
from core.ledger import LedgerStore
from core.models import Notification, NotificationType, Transaction, TransactionStatus, TransactionType, User


T0 = datetime(2026, 1, 1, 12, 0, tzinfo=dt_timezone.utc)


def fee_transactions(user):
	return Transaction.objects.filter(user=user, type=TransactionType.WALLET_FEE, status=TransactionStatus.COMPLETED)


class RecordingStore(LedgerStore):
	"""Ledger store that remembers every mutating call."""

	def __init__(self):
		self.mutations = []

	def mark_waived(self, *args, **kwargs):
		self.mutations.append("mark_waived")
		return super().mark_waived(*args, **kwargs)

	def mark_locked(self, *args, **kwargs):
		self.mutations.append("mark_locked")
		return super().mark_locked(*args, **kwargs)

	def mark_charged(self, *args, **kwargs):
		self.mutations.append("mark_charged")
		return super().mark_charged(*args, **kwargs)

	def set_balance(self, *args, **kwargs):
		self.mutations.append("set_balance")
		return super().set_balance(*args, **kwargs)

	def record_transaction(self, **fields):
		self.mutations.append("record_transaction")
		return super().record_transaction(**fields)


class FailingStore(LedgerStore):
	"""Ledger store whose transaction insert fails after the balances were written."""

	def record_transaction(self, **fields):
		raise DatabaseError("connection reset while inserting transaction")


class BrokenNotifier:
	def create(self, user_id, title, message, type):
		raise RuntimeError("notification service down")


class TestScheduleWalletFee:
	"""Tests for fee scheduling at account creation."""

	def test_due_date_is_thirty_days_after_creation(self, make_user):
		"""New user created at T0 gets a due date of exactly T0 + 30 days."""
		user = make_user(created_at=T0)

		due = schedule_wallet_fee(user)

		assert due == T0 + timedelta(days=30)
		assert User.objects.get(pk=user.pk).wallet_fee_due_at == T0 + timedelta(days=30)

	def test_second_call_keeps_existing_due_date(self, make_user):
		"""Scheduling twice never overwrites the first due date."""
		user = make_user(created_at=T0)
		schedule_wallet_fee(user)

		user.created_at = T0 + timedelta(days=10)
		due = schedule_wallet_fee(user)

		assert due == T0 + timedelta(days=30)
		assert User.objects.get(pk=user.pk).wallet_fee_due_at == T0 + timedelta(days=30)

	def test_trial_length_comes_from_settings(self, make_user, settings):
		settings.FREE_TRIAL_DAYS = 7
		user = make_user(created_at=T0)

		assert WalletFeeProcessor().schedule_wallet_fee(user) == T0 + timedelta(days=7)

	def test_unknown_user_raises(self, db):
		ghost = User(email="ghost@example.com", created_at=T0)

		with pytest.raises(UserNotFound):
			schedule_wallet_fee(ghost)


class TestReferralExemption:
	"""Tests for the referral exemption evaluator."""

	def test_referral_stake_before_due_date_qualifies(self, make_user, make_stake):
		"""A refers B; B stakes $25 before A's due date."""
		due = T0 + timedelta(days=30)
		referrer = make_user(created_at=T0, due_at=due)
		referred = make_user(referrer=referrer)
		make_stake(referred, "25.00", created_at=T0 + timedelta(days=5))

		assert check_referral_exemption(referrer.pk, due) is True

	def test_no_referrals(self, make_user):
		user = make_user()

		assert check_referral_exemption(user.pk, T0) is False

	def test_stake_below_minimum_does_not_qualify(self, make_user, make_stake):
		referrer = make_user()
		referred = make_user(referrer=referrer)
		make_stake(referred, "19.99", created_at=T0)

		assert check_referral_exemption(referrer.pk, T0 + timedelta(days=1)) is False

	def test_stake_after_cutoff_does_not_qualify(self, make_user, make_stake):
		referrer = make_user()
		referred = make_user(referrer=referrer)
		make_stake(referred, "50.00", created_at=T0 + timedelta(days=31))

		assert check_referral_exemption(referrer.pk, T0 + timedelta(days=30)) is False

	def test_boundaries_are_inclusive(self, make_user, make_stake):
		"""Exactly the minimum, exactly at the cutoff, still qualifies."""
		cutoff = T0 + timedelta(days=30)
		referrer = make_user()
		referred = make_user(referrer=referrer)
		make_stake(referred, "20.00", created_at=cutoff)

		assert check_referral_exemption(referrer.pk, cutoff) is True

	def test_only_referred_users_count(self, make_user, make_stake):
		"""The referrer's own stake is not an exemption."""
		referrer = make_user()
		make_stake(referrer, "100.00", created_at=T0)

		assert check_referral_exemption(referrer.pk, T0 + timedelta(days=1)) is False

	def test_unknown_referrer_raises(self, db):
		with pytest.raises(UserNotFound):
			check_referral_exemption(uuid4(), T0)

	def test_stops_at_first_match(self, make_user, make_stake):
		referrer = make_user()
		first = make_user(referrer=referrer)
		make_user(referrer=referrer)
		make_stake(first, "30.00", created_at=T0)

		class CountingStore(LedgerStore):
			lookups = 0

			def has_qualifying_stake(self, *args):
				CountingStore.lookups += 1
				return super().has_qualifying_stake(*args)

		assert ReferralExemptionEvaluator(CountingStore()).check(referrer.pk, T0 + timedelta(days=1)) is True
		assert CountingStore.lookups == 1


class TestProcessWalletFee:
	"""Tests for the single-user fee state machine."""

	def test_not_yet_due(self, make_user):
		user = make_user(balance="10.00", due_at=T0 + timedelta(days=3650))

		outcome = process_wallet_fee_for_user(user.pk)

		assert outcome.status == PENDING
		assert outcome.due_date == user.wallet_fee_due_at
		user.refresh_from_db()
		assert user.wallet_fee_processed is False
		assert user.wallet_fee_locked is False

	def test_no_due_date_is_pending(self, make_user):
		user = make_user(balance="10.00", due_at=None)

		assert process_wallet_fee_for_user(user.pk).status == PENDING

	def test_waived_when_referral_staked(self, make_user, make_stake, fee_receiver, balance_of, past_due):
		"""Referral exemption waives the fee without touching the balance."""
		user = make_user(balance="10.00", due_at=past_due)
		referred = make_user(referrer=user)
		make_stake(referred, "25.00", created_at=past_due - timedelta(days=2))

		outcome = process_wallet_fee_for_user(user.pk)

		assert outcome.status == WAIVED
		assert outcome.exemption_met is True
		assert balance_of(user) == Decimal("10.00")
		assert not fee_transactions(user).exists()

		user.refresh_from_db()
		assert user.wallet_fee_waived is True
		assert user.wallet_fee_processed is True
		assert user.wallet_fee_locked is False
		assert user.wallet_fee_processed_at is not None

		note = Notification.objects.get(user=user)
		assert note.type == NotificationType.SUCCESS

	def test_exemption_wins_over_sufficient_balance(self, make_user, make_stake, fee_receiver, balance_of, past_due):
		user = make_user(balance="100.00", due_at=past_due)
		referred = make_user(referrer=user)
		make_stake(referred, "20.00", created_at=past_due - timedelta(hours=1))

		assert process_wallet_fee_for_user(user.pk).status == WAIVED
		assert balance_of(user) == Decimal("100.00")
		assert balance_of(fee_receiver) == Decimal("0.00")

	def test_waived_locked_user_is_unlocked(self, make_user, make_stake, past_due):
		user = make_user(balance="0.00", due_at=past_due, wallet_fee_locked=True)
		referred = make_user(referrer=user)
		make_stake(referred, "20.00", created_at=past_due - timedelta(days=1))

		assert process_wallet_fee_for_user(user.pk).status == WAIVED
		user.refresh_from_db()
		assert user.wallet_fee_locked is False

	def test_charged(self, make_user, fee_receiver, balance_of, past_due):
		"""Balance $10, due date passed → charged, 10 → 8, one WALLET_FEE row."""
		user = make_user(balance="10.00", due_at=past_due)

		outcome = process_wallet_fee_for_user(user.pk)

		assert outcome.status == CHARGED
		assert outcome.previous_balance == Decimal("10")
		assert outcome.new_balance == Decimal("8")
		assert outcome.fee_amount == Decimal("2")
		assert balance_of(user) == Decimal("8.00")
		assert balance_of(fee_receiver) == Decimal("2.00")

		tx = fee_transactions(user).get()
		assert tx.pk == outcome.transaction_id
		assert tx.amount == Decimal("2.00")
		assert tx.fee_amount == Decimal("2.00")
		assert tx.net_amount == Decimal("0.00")
		assert tx.fee_receiver_id == fee_receiver.pk
		assert tx.currency == "USD"

		user.refresh_from_db()
		assert user.wallet_fee_processed is True
		assert user.wallet_fee_waived is False
		assert user.wallet_fee_locked is False
		assert user.wallet_fee_processed_at is not None

		note = Notification.objects.get(user=user)
		assert note.type == NotificationType.INFO
		assert "$8.00" in note.message

	def test_balance_equal_to_fee_is_charged_to_zero(self, make_user, fee_receiver, balance_of, past_due):
		user = make_user(balance="2.00", due_at=past_due)

		assert process_wallet_fee_for_user(user.pk).status == CHARGED
		assert balance_of(user) == Decimal("0.00")

	def test_locked_when_balance_too_low(self, make_user, fee_receiver, balance_of, past_due):
		"""Balance $0.50, no referral → locked, still unprocessed."""
		user = make_user(balance="0.50", due_at=past_due)

		outcome = process_wallet_fee_for_user(user.pk)

		assert outcome.status == LOCKED
		assert outcome.current_balance == Decimal("0.5")
		assert outcome.required_amount == Decimal("2")
		assert balance_of(user) == Decimal("0.50")
		assert not fee_transactions(user).exists()

		user.refresh_from_db()
		assert user.wallet_fee_locked is True
		assert user.wallet_fee_processed is False
		assert user.wallet_fee_processed_at is None

		note = Notification.objects.get(user=user)
		assert note.type == NotificationType.WARNING

	def test_locked_wallet_is_only_notified_once(self, make_user, fee_receiver, past_due):
		user = make_user(balance="0.00", due_at=past_due)

		process_wallet_fee_for_user(user.pk)
		outcome = process_wallet_fee_for_user(user.pk)

		assert outcome.status == LOCKED
		assert Notification.objects.filter(user=user).count() == 1

	def test_locked_then_topped_up_is_charged(self, make_user, fee_receiver, balance_of, past_due):
		from core.models import Wallet

		user = make_user(balance="1.00", due_at=past_due)
		assert process_wallet_fee_for_user(user.pk).status == LOCKED

		Wallet.objects.filter(user=user).update(balance=Decimal("5.00"))
		outcome = process_wallet_fee_for_user(user.pk)

		assert outcome.status == CHARGED
		assert balance_of(user) == Decimal("3.00")
		user.refresh_from_db()
		assert user.wallet_fee_locked is False
		assert user.wallet_fee_processed is True

	def test_fee_amount_from_settings(self, make_user, fee_receiver, balance_of, past_due, settings):
		settings.WALLET_FEE_AMOUNT = Decimal("3.50")
		user = make_user(balance="10.00", due_at=past_due)

		outcome = WalletFeeProcessor().process_wallet_fee_for_user(user.pk)

		assert outcome.new_balance == Decimal("6.50")
		assert balance_of(fee_receiver) == Decimal("3.50")

	def test_unknown_user(self, db):
		with pytest.raises(UserNotFound):
			process_wallet_fee_for_user(uuid4())

	def test_missing_wallet(self, make_user, fee_receiver, past_due):
		user = make_user(due_at=past_due, wallet=False)

		with pytest.raises(WalletNotFound):
			process_wallet_fee_for_user(user.pk)

	def test_payer_is_never_its_own_receiver(self, make_user, balance_of, past_due):
		"""An admin paying the fee credits another admin's wallet, not its own."""
		older_admin = make_user(balance="10.00", due_at=past_due, is_admin=True, created_at=T0)
		other_admin = make_user(balance="0.00", is_admin=True, created_at=T0 + timedelta(days=1))

		outcome = process_wallet_fee_for_user(older_admin.pk)

		assert outcome.status == CHARGED
		assert balance_of(older_admin) == Decimal("8.00")
		assert balance_of(other_admin) == Decimal("2.00")


class TestIdempotence:
	"""Repeated processing never charges twice."""

	def test_second_call_returns_same_outcome_without_mutation(self, make_user, fee_receiver, balance_of, past_due):
		user = make_user(balance="10.00", due_at=past_due)
		process_wallet_fee_for_user(user.pk)

		store = RecordingStore()
		processor = WalletFeeProcessor(store=store)
		first = processor.process_wallet_fee_for_user(user.pk)
		second = processor.process_wallet_fee_for_user(user.pk)

		assert first.status == second.status == CHARGED
		assert first.already_processed and second.already_processed
		assert store.mutations == []
		assert balance_of(user) == Decimal("8.00")

	def test_waived_user_stays_waived(self, make_user, past_due):
		user = make_user(balance="10.00", due_at=past_due, wallet_fee_processed=True, wallet_fee_waived=True)

		outcome = process_wallet_fee_for_user(user.pk)

		assert outcome.status == WAIVED
		assert outcome.already_processed is True

	def test_at_most_one_fee_transaction(self, make_user, fee_receiver, balance_of, past_due):
		user = make_user(balance="10.00", due_at=past_due)

		for _ in range(3):
			process_wallet_fee_for_user(user.pk)

		assert fee_transactions(user).count() == 1
		assert balance_of(user) == Decimal("8.00")
		assert balance_of(fee_receiver) == Decimal("2.00")

	def test_completed_transaction_cannot_be_modified(self, make_user, fee_receiver, past_due):
		user = make_user(balance="10.00", due_at=past_due)
		process_wallet_fee_for_user(user.pk)
		tx = fee_transactions(user).get()

		tx.amount = Decimal("0.01")
		with pytest.raises(ImmutableTransactionError):
			tx.save()

	def test_completed_transaction_cannot_be_bulk_updated(self, make_user, fee_receiver, past_due):
		user = make_user(balance="10.00", due_at=past_due)
		process_wallet_fee_for_user(user.pk)

		with pytest.raises(ImmutableTransactionError):
			fee_transactions(user).update(amount=Decimal("0.01"))

		assert fee_transactions(user).get().amount == Decimal("2.00")

	def test_pending_transaction_can_be_bulk_updated(self, make_user):
		user = make_user()
		LedgerStore().record_transaction(
			user=user, type=TransactionType.DEPOSIT, amount=Decimal("1.00"), status=TransactionStatus.PENDING,
		)

		updated = Transaction.objects.filter(user=user).update(status=TransactionStatus.FAILED)

		assert updated == 1


class TestAtomicity:
	"""A failed unit leaves the user exactly as it was."""

	def test_storage_failure_rolls_back_debit(self, make_user, fee_receiver, balance_of, past_due):
		user = make_user(balance="10.00", due_at=past_due)

		with pytest.raises(StorageFailure):
			WalletFeeProcessor(store=FailingStore()).process_wallet_fee_for_user(user.pk)

		assert balance_of(user) == Decimal("10.00")
		assert balance_of(fee_receiver) == Decimal("0.00")
		assert not Transaction.objects.filter(user=user).exists()
		user.refresh_from_db()
		assert user.wallet_fee_processed is False
		assert user.wallet_fee_locked is False

	def test_missing_receiver_refuses_charge(self, make_user, balance_of, past_due):
		user = make_user(balance="10.00", due_at=past_due)

		with pytest.raises(FeeReceiverMissing):
			process_wallet_fee_for_user(user.pk)

		assert balance_of(user) == Decimal("10.00")
		user.refresh_from_db()
		assert user.wallet_fee_processed is False

	def test_missing_receiver_still_locks_low_balance(self, make_user, past_due):
		user = make_user(balance="1.00", due_at=past_due)

		assert process_wallet_fee_for_user(user.pk).status == LOCKED

	def test_missing_receiver_allowed_by_settings(self, make_user, balance_of, past_due, settings):
		settings.WALLET_FEE_REQUIRE_RECEIVER = False
		user = make_user(balance="10.00", due_at=past_due)

		outcome = WalletFeeProcessor().process_wallet_fee_for_user(user.pk)

		assert outcome.status == CHARGED
		assert balance_of(user) == Decimal("8.00")
		assert fee_transactions(user).get().fee_receiver_id is None

	def test_notification_failure_keeps_the_charge(self, make_user, fee_receiver, balance_of, past_due):
		user = make_user(balance="10.00", due_at=past_due)

		outcome = WalletFeeProcessor(notifier=BrokenNotifier()).process_wallet_fee_for_user(user.pk)

		assert outcome.status == CHARGED
		assert balance_of(user) == Decimal("8.00")
		user.refresh_from_db()
		assert user.wallet_fee_processed is True

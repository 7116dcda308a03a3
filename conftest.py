"""Shared pytest fixtures: users with wallets, an admin fee receiver, stakes."""

import itertools
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from core.models import User, Wallet, Referral, Staking


@pytest.fixture
def make_user(db):
	"""
	Factory: make_user(balance="10.00", due_at=..., referrer=..., wallet=False, **user_fields)
	"""
	counter = itertools.count(1)

	def _make(balance="0.00", email=None, due_at=None, referrer=None, wallet=True, **fields):
		n = next(counter)
		fields.setdefault("display_name", f"User {n}")
		user = User.objects.create(email=email or f"user{n}@example.com", wallet_fee_due_at=due_at, **fields)
		if wallet:
			Wallet.objects.create(user=user, balance=Decimal(balance))
		if referrer is not None:
			Referral.objects.create(referrer=referrer, referred=user)
		return user

	return _make


@pytest.fixture
def fee_receiver(make_user):
	return make_user(email="treasury@example.com", is_admin=True, created_at=timezone.now() - timedelta(days=365))


@pytest.fixture
def past_due():
	return timezone.now() - timedelta(days=1)


@pytest.fixture
def make_stake(db):
	def _make(user, amount, created_at=None, duration_days=30):
		created_at = created_at or timezone.now()
		return Staking.objects.create(
			user=user,
			amount_staked=Decimal(amount),
			duration_days=duration_days,
			start_date=created_at,
			end_date=created_at + timedelta(days=duration_days),
			created_at=created_at,
		)

	return _make


@pytest.fixture
def balance_of(db):
	def _balance(user) -> Decimal:
		return Wallet.objects.get(user=user).balance

	return _balance

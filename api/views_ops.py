"""Operational endpoints that move wallet state forward (deposit/withdraw/transfer/stake, fee runs)."""

import hmac
import json
import logging
from django.http import JsonResponse, HttpResponseBadRequest, HttpResponseForbidden
from django.views.decorators.csrf import csrf_exempt
from django.middleware.csrf import get_token
from django.conf import settings
from django.core.exceptions import ValidationError
from core.exceptions import WalletError, UserNotFound, WalletNotFound, WalletLocked, InsufficientFunds, StorageFailure
from core.fees import BatchFeeRunner, WalletFeeProcessor
from core.services import WalletServices

logger = logging.getLogger(__name__)


def health(request):
	return JsonResponse({"ok": True})


def csrf(request):
	# Sets the csrftoken cookie; send it back as X-CSRFToken on wallet POSTs
	return JsonResponse({"csrftoken": get_token(request)})


# --- Helpers -----------------------------------------------------------------

def _json_body(request) -> dict:
	try:
		body = json.loads(request.body or b"{}")
	except ValueError:
		raise ValueError("Invalid JSON")
	if not isinstance(body, dict):
		raise ValueError("JSON object expected")
	return body


def _error_response(exc: Exception) -> JsonResponse:
	if isinstance(exc, (UserNotFound, WalletNotFound)):
		return JsonResponse({"error": str(exc)}, status=404)
	if isinstance(exc, WalletLocked):
		return JsonResponse({"error": exc.reason, "required_amount": exc.required_amount}, status=403)
	if isinstance(exc, InsufficientFunds):
		return JsonResponse({"error": "insufficient_balance", "balance": exc.balance, "required": exc.required}, status=400)
	if isinstance(exc, StorageFailure):
		return JsonResponse({"error": "storage_unavailable"}, status=503)
	return JsonResponse({"error": str(exc)}, status=400)


def _cron_authorized(request) -> bool:
	secret = getattr(settings, "CRON_SECRET", "")
	if not secret:
		return True
	header = request.headers.get("Authorization") or ""
	if not header.startswith("Bearer "):
		return False
	return hmac.compare_digest(header[len("Bearer "):].encode("utf-8"), secret.encode("utf-8"))


# --- Wallet operations -------------------------------------------------------

def deposit(request, user_id):
	"""
	POST: Credit the wallet; if it was fee-locked, the fee is re-processed right away
	"""
	if request.method != "POST":
		return HttpResponseBadRequest("POST only")
	try:
		body = _json_body(request)
		if "amount" not in body:
			return HttpResponseBadRequest("amount required")
		tx, fee_outcome = WalletServices().deposit(user_id, body["amount"], body.get("memo", ""))
	except (WalletError, ValueError, ValidationError) as e:
		return _error_response(e)

	return JsonResponse({
		"transaction_id": str(tx.id),
		"amount": tx.amount,
		"wallet_fee": fee_outcome.as_dict() if fee_outcome else None,
	}, status=201)


def withdraw(request, user_id):
	"""
	POST: Debit the wallet (blocked while the wallet fee lock is set)
	"""
	if request.method != "POST":
		return HttpResponseBadRequest("POST only")
	try:
		body = _json_body(request)
		if "amount" not in body:
			return HttpResponseBadRequest("amount required")
		tx = WalletServices().withdraw(user_id, body["amount"], body.get("memo", ""))
	except (WalletError, ValueError, ValidationError) as e:
		return _error_response(e)
	return JsonResponse({"transaction_id": str(tx.id), "amount": tx.amount}, status=201)


def transfer(request, user_id):
	"""
	POST: Move funds to another user ({"to_user_id", "amount", "memo"})
	"""
	if request.method != "POST":
		return HttpResponseBadRequest("POST only")
	try:
		body = _json_body(request)
		if not body.get("to_user_id") or "amount" not in body:
			return HttpResponseBadRequest("to_user_id and amount required")
		tx = WalletServices().transfer(user_id, body["to_user_id"], body["amount"], body.get("memo", ""))
	except (WalletError, ValueError, ValidationError) as e:
		return _error_response(e)
	return JsonResponse({"transaction_id": str(tx.id), "amount": tx.amount}, status=201)


def stake(request, user_id):
	"""
	POST: Stake funds ({"amount", "duration_days", "reward_percent"})
	"""
	if request.method != "POST":
		return HttpResponseBadRequest("POST only")
	try:
		body = _json_body(request)
		if "amount" not in body or "duration_days" not in body:
			return HttpResponseBadRequest("amount and duration_days required")
		staking = WalletServices().stake(user_id, body["amount"], body["duration_days"], body.get("reward_percent", "0"))
	except (WalletError, ValueError, ValidationError) as e:
		return _error_response(e)
	return JsonResponse({
		"staking_id": staking.id,
		"amount_staked": staking.amount_staked,
		"end_date": staking.end_date.isoformat(),
	}, status=201)


# --- Wallet fee --------------------------------------------------------------

def process_user_wallet_fee(request, user_id):
	"""
	POST: Re-run the fee state machine for one user (e.g. after an out-of-band top-up)
	"""
	if request.method != "POST":
		return HttpResponseBadRequest("POST only")
	try:
		outcome = WalletFeeProcessor().process_wallet_fee_for_user(user_id)
	except WalletError as e:
		return _error_response(e)
	return JsonResponse(outcome.as_dict())


@csrf_exempt
def process_wallet_fees(request):
	"""
	POST: Batch trigger for the external scheduler. Requires "Authorization: Bearer <CRON_SECRET>".
	"""
	if request.method != "POST":
		return HttpResponseBadRequest("POST required")

	if not _cron_authorized(request):
		logger.warning("Rejected wallet fee batch trigger from %s", request.META.get("REMOTE_ADDR"))
		return HttpResponseForbidden("Bad cron secret")

	try:
		summary = BatchFeeRunner().process_all_due_wallet_fees()
	except StorageFailure as e:
		logger.error("Wallet fee batch aborted: %s", e)
		return _error_response(e)
	return JsonResponse(summary.as_dict())

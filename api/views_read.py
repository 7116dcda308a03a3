"""Read-only endpoints: wallet fee status, action gate, balances, transaction history."""

from django.http import JsonResponse
from core.exceptions import UserNotFound, WalletNotFound
from core.fees import WalletActionGate, WalletFeeProcessor
from core.services import WalletServices
from core.ledger import LedgerStore


def wallet_fee_status(request, user_id):
	"""
	GET: Fee due date, flags, and days left in the free trial
	"""
	try:
		status = WalletFeeProcessor().get_wallet_fee_status(user_id)
	except UserNotFound:
		return JsonResponse({"error": "User not found"}, status=404)
	return JsonResponse(status)


def wallet_action_check(request, user_id):
	"""
	GET: Whether wallet-mutating actions are currently allowed for this user
	"""
	check = WalletActionGate().check_wallet_action_allowed(user_id)
	return JsonResponse(check.as_dict())


def balance(request, user_id):
	"""
	GET: Current wallet balance
	"""
	try:
		amount = WalletServices().balance(user_id)
	except (UserNotFound, WalletNotFound) as e:
		return JsonResponse({"error": str(e)}, status=404)
	return JsonResponse({"user_id": str(user_id), "balance": f"{amount:.2f}"})


def transactions(request, user_id):
	"""
	GET: Most recent transactions for the user (newest first)
	"""
	store = LedgerStore()
	if not store.user_exists(user_id):
		return JsonResponse({"error": "User not found"}, status=404)
	rows = store.transactions_for(user_id, limit=50)
	data = [
		{
			"id": str(r.id),
			"type": r.type,
			"amount": f"{r.amount:.2f}",
			"currency": r.currency,
			"status": r.status,
			"description": r.description,
			"fee_amount": f"{r.fee_amount:.2f}",
			"fee_receiver_id": str(r.fee_receiver_id) if r.fee_receiver_id else None,
			"net_amount": f"{r.net_amount:.2f}",
			"counterparty_id": str(r.counterparty_id) if r.counterparty_id else None,
			"created_at": r.created_at.isoformat(),
		}
		for r in rows
	]
	return JsonResponse(data, safe=False)

"""Public API surface for the wallet service.

- /users/<id>/deposit|withdraw|transfer|stake: wallet operations (all but deposit are gated)
- /users/<id>/wallet-fee-status, /wallet-action-check: fee lifecycle reads
- /users/<id>/wallet-fee/process: re-run the fee for one user
- /csrf: issues the CSRF cookie required by the wallet POST endpoints
- /cron/process-wallet-fees: batch trigger for the external scheduler
"""

from django.urls import path
from .views_ops import health, csrf, deposit, withdraw, transfer, stake, process_user_wallet_fee, process_wallet_fees
from .views_read import wallet_fee_status, wallet_action_check, balance, transactions


urlpatterns = [
	path("health", health),
	path("csrf", csrf),
	path("cron/process-wallet-fees", process_wallet_fees, name="process_wallet_fees"),
	path("users/<uuid:user_id>/deposit", deposit),
	path("users/<uuid:user_id>/withdraw", withdraw),
	path("users/<uuid:user_id>/transfer", transfer),
	path("users/<uuid:user_id>/stake", stake),
	path("users/<uuid:user_id>/wallet-fee/process", process_user_wallet_fee),
	path("users/<uuid:user_id>/wallet-fee-status", wallet_fee_status),
	path("users/<uuid:user_id>/wallet-action-check", wallet_action_check),
	path("users/<uuid:user_id>/balance", balance),
	path("users/<uuid:user_id>/transactions", transactions),
]

"""Batch trigger for the external scheduler: python manage.py process_wallet_fees"""

import json

from django.core.management.base import BaseCommand, CommandError
from django.core.serializers.json import DjangoJSONEncoder

from core.exceptions import StorageFailure
from core.fees import process_all_due_wallet_fees


class Command(BaseCommand):
	help = "Charge, waive or lock every wallet fee that is due and not yet processed."

	def add_arguments(self, parser):
		parser.add_argument("--json", action="store_true", help="Print the full summary as JSON")

	def handle(self, *args, **options):
		try:
			summary = process_all_due_wallet_fees()
		except StorageFailure as e:
			raise CommandError(str(e)) from e
		if options["json"]:
			self.stdout.write(json.dumps(summary.as_dict(), cls=DjangoJSONEncoder, indent=2))
			return
		self.stdout.write(
			f"total={summary.total} charged={summary.charged} waived={summary.waived} "
			f"locked={summary.locked} errors={summary.errors}"
		)
		for d in summary.details:
			if d["status"] == "error":
				self.stderr.write(f"{d['user_id']} ({d['email']}): {d['message']}")

"""Schedule wallet fees for users created before the fee system existed."""

from django.core.management.base import BaseCommand

from core.fees import WalletFeeProcessor


class Command(BaseCommand):
	help = "Set wallet_fee_due_at (created_at + trial days) for every user that has none, then print fee stats."

	def handle(self, *args, **options):
		processor = WalletFeeProcessor()
		result = processor.initialize_wallet_fees()
		if result["total"] == 0:
			self.stdout.write(self.style.SUCCESS("All users already have wallet fee dates set"))
		else:
			self.stdout.write(f"Users without due date: {result['total']}")
			self.stdout.write(f"  updated: {result['updated']}")
			self.stdout.write(f"  errors:  {result['errors']}")

		stats = processor.wallet_fee_stats()
		self.stdout.write("Current wallet fee status:")
		self.stdout.write(f"  overdue (needs processing): {stats['overdue']}")
		self.stdout.write(f"  pending (in trial):         {stats['pending']}")
		self.stdout.write(f"  waived (referral success):  {stats['waived']}")
		self.stdout.write(f"  charged (fee paid):         {stats['charged']}")
		self.stdout.write(f"  locked (awaiting top-up):   {stats['locked']}")
		if stats["overdue"]:
			self.stdout.write(self.style.WARNING("Overdue fees found; run `manage.py process_wallet_fees`"))

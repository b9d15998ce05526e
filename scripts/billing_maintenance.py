"""
Scheduled billing maintenance.

- Revokes premium roles for PAST_DUE subscriptions whose 7-day grace period
  has lapsed (no webhook arrives when that happens).
- Flags custom discount offers past their expiry time.

Run: python -m scripts.billing_maintenance [--skip-grace] [--skip-offers]
"""
import argparse
import logging
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core import config
from app.core.errors import BillingError
from app.core.logging_config import setup_logging
from app.db.session import SessionLocal
from app.services.discount_offer_service import DiscountOfferService
from app.services.stripe_service import StripeGateway
from app.services.subscription_sync_service import SubscriptionSyncService

logger = logging.getLogger(__name__)


def run_maintenance(sweep_grace: bool = True, cleanup_offers: bool = True) -> dict:
    """Run the selected maintenance jobs and return a summary."""
    summary = {"grace_users_checked": 0, "grace_users_changed": 0, "offers_expired": 0}
    db = SessionLocal()
    try:
        if sweep_grace:
            sync_service = SubscriptionSyncService(StripeGateway.from_config())
            results = sync_service.reconcile_lapsed_grace_periods(db)
            summary["grace_users_checked"] = len(results)
            summary["grace_users_changed"] = sum(1 for result in results if result.changed)

        if cleanup_offers:
            summary["offers_expired"] = DiscountOfferService().cleanup_expired_offers(db)
    finally:
        db.close()

    logger.info(f"Billing maintenance complete: {summary}")
    return summary


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Billing maintenance jobs")
    parser.add_argument("--skip-grace", action="store_true", help="Skip the lapsed grace period sweep")
    parser.add_argument("--skip-offers", action="store_true", help="Skip expired offer cleanup")
    args = parser.parse_args(argv)

    setup_logging(config.LOG_LEVEL)
    try:
        run_maintenance(sweep_grace=not args.skip_grace, cleanup_offers=not args.skip_offers)
    except BillingError as e:
        logger.error(f"Billing maintenance failed: {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

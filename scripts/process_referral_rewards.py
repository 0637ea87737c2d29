#!/usr/bin/env python3
"""
Guitar Dice Referral Reward Run

Grants one month of premium to every referrer whose referee holds an active
subscription. Safe to run repeatedly and concurrently with the webhook and
admin triggers: each referral is claimed exactly once.

Usage:
    # Process pending rewards (default - for cron)
    python3 scripts/process_referral_rewards.py

    # Verbose logging
    python3 scripts/process_referral_rewards.py --verbose

Exit code is 1 when any referral failed, so cron mail picks it up.
"""

import argparse
import asyncio
import sys

from guitar_dice.config import settings
from guitar_dice.db.session import close_engines, get_session_factory
from guitar_dice.models.domain import RewardReport
from guitar_dice.observability.logging import get_logger, setup_logging
from guitar_dice.services.referrals import ReferralRewardProcessor

logger = get_logger(__name__)


async def run() -> RewardReport:
    try:
        return await ReferralRewardProcessor(get_session_factory()).process_rewards()
    finally:
        await close_engines()


def main() -> int:
    parser = argparse.ArgumentParser(description="Grant pending referral rewards")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args()

    if args.verbose:
        settings.log_level = "DEBUG"
    setup_logging()

    report = asyncio.run(run())
    logger.info("referral_reward_run_finished", processed=report.processed, errors=report.errors)
    return 1 if report.errors else 0


if __name__ == "__main__":
    sys.exit(main())

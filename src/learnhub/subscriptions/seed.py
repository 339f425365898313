"""Subscription plan seed data."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.db.models import SubscriptionPlan

logger = logging.getLogger(__name__)

FREE_PLAN: dict[str, Any] = {
    "name": "Free",
    "description": "Basic access to the platform",
    "price_monthly": Decimal(0),
    "price_yearly": Decimal(0),
    "max_sessions_per_week": 2,
    "can_create_private_teams": False,
    "has_priority_booking": False,
    "has_advanced_analytics": False,
}

PLAN_SEED_DATA: list[dict[str, Any]] = [
    FREE_PLAN,
    {
        "name": "Pro",
        "description": "Professional features including premium team creation",
        "price_monthly": Decimal(999),
        "price_yearly": Decimal(9990),
        "max_sessions_per_week": 10,
        "can_create_private_teams": True,
        "has_priority_booking": True,
        "has_advanced_analytics": False,
    },
    {
        "name": "Enterprise",
        "description": "Full platform access with advanced features",
        "price_monthly": Decimal(2999),
        "price_yearly": Decimal(29990),
        "max_sessions_per_week": -1,  # unlimited
        "can_create_private_teams": True,
        "has_priority_booking": True,
        "has_advanced_analytics": True,
    },
]


async def seed_plans(db: AsyncSession) -> int:
    """Upsert subscription plans by name. Returns number of plans seeded."""
    for plan_data in PLAN_SEED_DATA:
        result = await db.execute(select(SubscriptionPlan).where(SubscriptionPlan.name == plan_data["name"]))
        plan = result.scalar_one_or_none()
        if plan is None:
            db.add(SubscriptionPlan(**plan_data))
        else:
            for key, value in plan_data.items():
                setattr(plan, key, value)

    await db.commit()
    logger.info("Seeded %d subscription plans", len(PLAN_SEED_DATA))
    return len(PLAN_SEED_DATA)

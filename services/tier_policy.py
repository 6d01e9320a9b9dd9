"""
Tier policy: who may see which content.

Requester tiers and content access levels are two separate ordered scales
with the same ranks:

    requester:  none < free < paid
    content:    public < free < paid

Access is granted when the requester's rank is at least the content's rank.
"""
from typing import List, Optional, Union

from models.post import AccessLevel
from models.subscription import SubscriptionTier

TIER_RANKS = {
    SubscriptionTier.NONE: 0,
    SubscriptionTier.FREE: 1,
    SubscriptionTier.PAID: 2,
}

ACCESS_LEVEL_RANKS = {
    AccessLevel.PUBLIC: 0,
    AccessLevel.FREE: 1,
    AccessLevel.PAID: 2,
}


def resolve_tier(user) -> SubscriptionTier:
    """Tier of a requester; anonymous callers and unknown values count as none."""
    if user is None:
        return SubscriptionTier.NONE
    try:
        return SubscriptionTier(user.subscription_tier)
    except ValueError:
        return SubscriptionTier.NONE


def can_access(requester_tier: Union[SubscriptionTier, str], required_level: Union[AccessLevel, str]) -> bool:
    return TIER_RANKS[SubscriptionTier(requester_tier)] >= ACCESS_LEVEL_RANKS[AccessLevel(required_level)]


def visible_levels(requester_tier: Union[SubscriptionTier, str]) -> List[AccessLevel]:
    """Access levels a requester may list, lowest first."""
    return [level for level in AccessLevel if can_access(requester_tier, level)]


def denial_reason(requester_tier: Union[SubscriptionTier, str], required_level: Union[AccessLevel, str]) -> Optional[dict]:
    """None when access is allowed, otherwise the required and current tiers."""
    if can_access(requester_tier, required_level):
        return None
    return {
        "requiredTier": AccessLevel(required_level).value,
        "currentTier": SubscriptionTier(requester_tier).value,
    }

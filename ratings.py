"""
Vendor rating cache.

A vendor's `average_rating`, `num_reviews` and `rating_distribution` are a
denormalized summary of the review collection. Review routes call
`refresh_vendor_rating` after every create, update and delete so the cache
matches the reviews once the request completes.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Optional

import structlog
from bson import ObjectId

logger = structlog.get_logger(__name__)

STARS = range(1, 6)


def round_half_up(value: Decimal, places: int = 1) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(value.quantize(quantum, rounding=ROUND_HALF_UP))


def summarize_ratings(ratings: Iterable[int]) -> Dict[str, Any]:
    """Return count, rounded mean and 1-5 histogram for a set of ratings.

    The mean is computed with Decimal so the result does not depend on the
    order the reviews come back in (4.75 always rounds to 4.8).
    """
    distribution = {str(star): 0 for star in STARS}
    total = 0
    count = 0
    for rating in ratings:
        rating = int(rating)
        if rating not in STARS:
            raise ValueError(f"rating out of range: {rating}")
        distribution[str(rating)] += 1
        total += rating
        count += 1

    average = round_half_up(Decimal(total) / Decimal(count)) if count else 0
    return {
        "average_rating": average,
        "num_reviews": count,
        "rating_distribution": distribution,
    }


def refresh_vendor_rating(db, vendor_id: str) -> Optional[Dict[str, Any]]:
    """Recompute the vendor's summary from its reviews and store it on the vendor.

    Returns the stored summary, or None when the vendor record no longer exists.
    """
    if not ObjectId.is_valid(vendor_id):
        logger.warning("rating_refresh_skipped", vendor_id=vendor_id, reason="invalid id")
        return None
    vendor_id = str(ObjectId(vendor_id))

    cursor = db["review"].find({"vendor_id": vendor_id}, {"rating": 1})
    stats = summarize_ratings(r["rating"] for r in cursor)

    res = db["user"].update_one({"_id": ObjectId(vendor_id)}, {"$set": stats})
    if res.matched_count == 0:
        logger.warning("rating_refresh_skipped", vendor_id=vendor_id, reason="vendor not found")
        return None

    logger.info("rating_refreshed", vendor_id=vendor_id, **stats)
    return stats

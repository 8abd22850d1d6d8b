"""
Query validation for the transaction pipeline.
"""

from shared.errors import ValidationError

from .models import MAX_DATE_RANGE_DAYS, TransactionQuery, clamp_page_size

__all__ = ["validate_query", "clamp_page_size"]


def validate_query(query: TransactionQuery) -> TransactionQuery:
    """Check a query against the listing policy.

    Rules are applied in order and the first violation wins.

    Raises:
        ValidationError: empty recipient list, start after end, or a range
            longer than MAX_DATE_RANGE_DAYS.
    """
    if not query.recipient_codes:
        raise ValidationError("Recipient code list cannot be empty")

    if query.start_date > query.end_date:
        raise ValidationError(
            "Start date cannot be after end date",
            {"startdate": query.start_date.isoformat(), "enddate": query.end_date.isoformat()}
        )

    days = (query.end_date - query.start_date).days
    if days > MAX_DATE_RANGE_DAYS:
        raise ValidationError(
            f"Date range cannot exceed {MAX_DATE_RANGE_DAYS} days. Current range: {days} days",
            {"days": days, "max_days": MAX_DATE_RANGE_DAYS}
        )

    return query

"""
Transaction data models for the Transaction Proxy Service.
"""

from typing import Iterable, List, Optional, Union
from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.errors import ValidationError


MAX_PAGE_SIZE = 2000
DEFAULT_PAGE_SIZE = 1000
MAX_TRANSACTIONS_PER_REQUEST = 5000
MAX_DATE_RANGE_DAYS = 92


def clamp_page_size(size: int) -> int:
    """Clamp a requested page size into [1, MAX_PAGE_SIZE]."""
    return max(1, min(size, MAX_PAGE_SIZE))


class TransactionRecord(BaseModel):
    """Transaction as published by the upstream spending API."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    doc_vob: Optional[str] = None
    doc_vob_name: Optional[str] = None
    doc_number: Optional[str] = None
    doc_date: Optional[date] = None
    doc_v_date: Optional[date] = None
    trans_date: Optional[date] = None
    amount: Optional[float] = None
    amount_cop: Optional[int] = None
    currency: Optional[str] = None

    payer_edrpou: Optional[str] = None
    payer_name: Optional[str] = None
    payer_account: Optional[str] = None
    payer_mfo: Optional[str] = None
    payer_bank: Optional[str] = None
    payer_edrpou_fact: Optional[str] = None
    payer_name_fact: Optional[str] = None

    recipt_edrpou: Optional[str] = None
    recipt_name: Optional[str] = None
    recipt_account: Optional[str] = None
    recipt_mfo: Optional[str] = None
    recipt_bank: Optional[str] = None
    recipt_edrpou_fact: Optional[str] = None
    recipt_name_fact: Optional[str] = None

    payment_details: Optional[str] = None
    doc_add_attr: Optional[str] = None
    region_id: Optional[int] = None
    payment_type: Optional[str] = None
    payment_data: Optional[str] = None
    source_id: Optional[int] = None
    source_name: Optional[str] = None
    kekv: Optional[int] = None
    kpk: Optional[str] = None
    contractId: Optional[str] = None
    contractNumber: Optional[str] = None
    budgetCode: Optional[str] = None
    system_key: Optional[str] = None
    system_key_ff: Optional[str] = None


class TransactionResult(BaseModel):
    """A record paired with its fingerprint, serialized as {transaction, hash}."""

    model_config = ConfigDict(populate_by_name=True)

    transaction: TransactionRecord
    fingerprint: str = Field(..., alias="hash")


class PageMetadata(BaseModel):
    """Derived pagination metadata."""

    model_config = ConfigDict(populate_by_name=True)

    current_page: int = Field(..., alias="currentPage")
    page_size: int = Field(..., alias="pageSize")
    total_elements: int = Field(..., alias="totalElements")
    total_pages: int = Field(..., alias="totalPages")
    has_next: bool = Field(..., alias="hasNext")
    has_previous: bool = Field(..., alias="hasPrevious")


class PagedTransactionResponse(BaseModel):
    """Response model for a paged transaction listing."""
    transactions: List[TransactionResult] = Field(default_factory=list)
    page: PageMetadata


class TransactionQuery(BaseModel):
    """Transaction listing query.

    Page size is clamped into [1, 2000] and a negative page is raised to 0 at
    construction. Date and recipient constraints are checked by
    ``validate_query``.
    """

    recipient_codes: List[str] = Field(default_factory=list)
    start_date: date
    end_date: date
    page: int = 0
    size: int = DEFAULT_PAGE_SIZE

    @field_validator("size")
    @classmethod
    def _clamp_size(cls, value: int) -> int:
        return clamp_page_size(value)

    @field_validator("page")
    @classmethod
    def _floor_page(cls, value: int) -> int:
        return max(0, value)

    @classmethod
    def from_params(
        cls,
        recipient_codes: Optional[Iterable[str]],
        start_date: Optional[Union[str, date]],
        end_date: Optional[Union[str, date]],
        page: Optional[Union[str, int]] = None,
        size: Optional[Union[str, int]] = None,
    ) -> "TransactionQuery":
        """Build a query from raw request parameters.

        Raises:
            ValidationError: a date is missing or not YYYY-MM-DD, or page/size
                is not an integer.
        """
        codes: List[str] = []
        for code in recipient_codes or []:
            code = code.strip()
            if code and code not in codes:
                codes.append(code)

        return cls(
            recipient_codes=codes,
            start_date=_parse_date("startdate", start_date),
            end_date=_parse_date("enddate", end_date),
            page=_parse_int("page", page, 0),
            size=_parse_int("size", size, DEFAULT_PAGE_SIZE),
        )


def _parse_date(name: str, value: Optional[Union[str, date]]) -> date:
    if value is None or value == "":
        raise ValidationError(f"Parameter '{name}' is required", {"parameter": name})
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(
            f"Invalid date for '{name}': {value}. Expected YYYY-MM-DD",
            {"parameter": name, "value": value}
        )


def _parse_int(name: str, value: Optional[Union[str, int]], default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Parameter '{name}' must be an integer",
            {"parameter": name, "value": str(value)}
        )

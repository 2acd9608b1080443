import datetime
import logging
import numbers

from salesboard.constants import API_FIELD_NAMES, ISO_DATE_FORMAT, OPTIONAL_FIELDS, RAW_FIELDS, RAW_INT_FIELDS

logger = logging.getLogger(__name__)

# (larger field, smaller field, message) pairs: larger must be >= smaller
ORDERING_RULES = [
    ("total_sale", "total_sale_gmv", "Total Sale must be >= Total Sale GMV"),
    ("total_sale_gmv", "gmv_sale_live", "Total Sale GMV must be >= GMV Sale Live"),
    ("gmv_ads_spend", "gmv_live_ads_spend", "GMV Ads Spend must be >= GMV Live Ads Spend"),
    ("visitor", "customers", "Customers cannot exceed Visitor"),
]


class ValidationError(ValueError):
    """
    Raised when a daily record fails validation.

    Attributes:
        errors (list): ``{"field": ..., "message": ...}`` entries, one per problem.
    """

    def __init__(self, errors):
        self.errors = errors
        super().__init__("; ".join(f"{e['field']}: {e['message']}" for e in errors))


def check_business_rules(record: dict) -> list:
    """
    Checks the value constraints shared by single saves and the bulk import.

    Args:
        record (dict): Numeric raw fields keyed by snake_case name.

    Returns:
        list: ``(field, message)`` tuples; empty when the record is valid.
    """
    problems = []
    for field in RAW_FIELDS:
        if record.get(field, 0) < 0:
            problems.append((field, f"{API_FIELD_NAMES[field]} must be positive"))

    for larger, smaller, message in ORDERING_RULES:
        if record.get(larger, 0) < record.get(smaller, 0):
            problems.append((larger, message))
    return problems


def parse_record_date(value) -> datetime.date:
    """
    Parses a record date given as a date, a 'YYYY-MM-DD' string or an ISO datetime string.

    Raises:
        ValueError: If the value cannot be read as a date.
    """
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid date: {value!r}")

    text = value.strip()
    try:
        return datetime.datetime.strptime(text[:10], ISO_DATE_FORMAT).date()
    except ValueError:
        raise ValueError(f"Invalid date: {value!r}, expected format YYYY-MM-DD")


class RecordValidator:
    def __init__(self, payload: dict, require_date: bool = True):
        """
        Initializes the RecordValidator for one daily record payload.

        Args:
            payload (dict): The request body. Keys may use the camelCase API names or snake_case.
            require_date (bool): False when the record is addressed by id and the date is not updated.
        """
        self.payload = payload or {}
        self.require_date = require_date
        self.errors = []

    def _lookup(self, field):
        api_name = API_FIELD_NAMES[field]
        if api_name in self.payload:
            return self.payload[api_name]
        return self.payload.get(field)

    def _error(self, field, message):
        self.errors.append({"field": API_FIELD_NAMES.get(field, field), "message": message})

    def validate(self) -> dict:
        """
        Validates the payload and returns the normalised record.

        Returns:
            dict: snake_case raw fields plus ``date`` (a ``datetime.date``) when present.

        Raises:
            ValidationError: Listing every problem found.
        """
        record = {}

        raw_date = self.payload.get("date")
        if raw_date is None:
            if self.require_date:
                self._error("date", "Date is required")
        else:
            try:
                record["date"] = parse_record_date(raw_date)
            except ValueError as e:
                self._error("date", str(e))

        for field in RAW_FIELDS:
            value = self._lookup(field)
            if value is None:
                if field in OPTIONAL_FIELDS:
                    record[field] = 0
                else:
                    self._error(field, f"{API_FIELD_NAMES[field]} is required")
                continue

            # bool is a subclass of int
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                self._error(field, f"{API_FIELD_NAMES[field]} must be a number")
                continue

            record[field] = int(value) if field in RAW_INT_FIELDS else float(value)

        if not self.errors:
            for field, message in check_business_rules(record):
                self._error(field, message)

        if self.errors:
            logger.info(f"Record validation failed with {len(self.errors)} error(s)")
            raise ValidationError(self.errors)

        return record

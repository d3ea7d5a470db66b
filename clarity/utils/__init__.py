"""Utility modules for Clarity."""

from clarity.utils.calendar import days_between, same_month, start_of_day, start_of_week
from clarity.utils.concurrency import KeyedGuard, SingleFlight
from clarity.utils.exceptions import (
    ClarityError,
    ConfigurationError,
    LLMError,
    NotFoundError,
    ParseError,
    StoreError,
    UrlFetchError,
    ValidationError,
)
from clarity.utils.id_generator import (
    generate_digest_id,
    generate_item_id,
    generate_note_id,
    generate_person_id,
    generate_project_id,
    generate_tag_id,
    generate_url_id,
)
from clarity.utils.logger import get_logger, setup_logging

__all__ = [
    # Logging
    "get_logger",
    "setup_logging",
    # ID Generators
    "generate_note_id",
    "generate_tag_id",
    "generate_project_id",
    "generate_item_id",
    "generate_person_id",
    "generate_url_id",
    "generate_digest_id",
    # Calendar
    "start_of_day",
    "start_of_week",
    "same_month",
    "days_between",
    # Concurrency
    "KeyedGuard",
    "SingleFlight",
    # Exceptions
    "ClarityError",
    "StoreError",
    "NotFoundError",
    "ValidationError",
    "ConfigurationError",
    "LLMError",
    "ParseError",
    "UrlFetchError",
]

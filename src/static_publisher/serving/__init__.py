"""Edge-time asset resolution: negotiation, preconditions and serving."""

from static_publisher.serving.negotiation import find_accept_encodings_groups, select_variant
from static_publisher.serving.preconditions import (
    check_if_modified_since,
    check_if_none_match,
    evaluate_preconditions,
    parse_if_modified_since,
    parse_if_none_match,
)
from static_publisher.serving.server import PublisherServer, ServedResponse

__all__ = [
    "PublisherServer",
    "ServedResponse",
    "check_if_modified_since",
    "check_if_none_match",
    "evaluate_preconditions",
    "find_accept_encodings_groups",
    "parse_if_modified_since",
    "parse_if_none_match",
    "select_variant",
]

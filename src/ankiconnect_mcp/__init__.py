"""AnkiConnect MCP Server - expose Anki to MCP clients via AnkiConnect."""

__version__ = "0.2.0"

from .anki_client import AnkiClient, AnkiConnectError, AnkiConnectionError
from .json_input import (
    ParseOutcome,
    json_array,
    json_object,
    json_record,
    json_string_to_native,
    parse_json_leniently,
)
from .stats import (
    BucketConfig,
    DailyCount,
    DistributionMetrics,
    RetentionMetrics,
    calculate_streak,
    compute_distribution,
    compute_retention,
)

__all__ = [
    "AnkiClient",
    "AnkiConnectError",
    "AnkiConnectionError",
    "ParseOutcome",
    "json_array",
    "json_object",
    "json_record",
    "json_string_to_native",
    "parse_json_leniently",
    "BucketConfig",
    "DailyCount",
    "DistributionMetrics",
    "RetentionMetrics",
    "calculate_streak",
    "compute_distribution",
    "compute_retention",
]

"""
Ingestion Package.

Leader-only consumption of booking system response files.

Modules:
- parsers: MX3 and Calypso response file parsers
- ingestor: Polling consumer of one response folder
- supervisor: Starts and stops ingestors on mastership changes
"""

from ingestion.parsers import (
    CalypsoResponseParser,
    Mx3ResponseParser,
    ResponseParser,
    parser_for,
)
from ingestion.ingestor import FileOutcome, ResponseIngestor
from ingestion.supervisor import IngestionSupervisor, build_ingestors

__all__ = [
    "CalypsoResponseParser",
    "Mx3ResponseParser",
    "ResponseParser",
    "parser_for",
    "FileOutcome",
    "ResponseIngestor",
    "IngestionSupervisor",
    "build_ingestors",
]

"""
Services for the note intelligence pipeline.

- QuotaLedger: free-tier allowances
- ProjectMatcher: alias/fuzzy project matching with learning
- ExtractionOrchestrator: one inference call per note save
- SessionAggregator: staleness-gated local rollup
- DailyDigestScheduler: one digest per calendar day
- UrlMetadataFetcher: page metadata for URLs in notes
- IntelligenceEngine: wires everything together
"""

from clarity.services.daily_digest_scheduler import DailyDigestScheduler, DigestInputs
from clarity.services.extraction_orchestrator import ExtractionOrchestrator
from clarity.services.intelligence_engine import IntelligenceEngine
from clarity.services.project_matcher import ProjectMatcher
from clarity.services.quota_ledger import QuotaLedger
from clarity.services.session_aggregator import SessionAggregator
from clarity.services.url_metadata import UrlMetadataFetcher, detect_urls

__all__ = [
    "QuotaLedger",
    "ProjectMatcher",
    "ExtractionOrchestrator",
    "SessionAggregator",
    "DailyDigestScheduler",
    "DigestInputs",
    "UrlMetadataFetcher",
    "detect_urls",
    "IntelligenceEngine",
]

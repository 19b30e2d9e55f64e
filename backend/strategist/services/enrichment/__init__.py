"""Enrichment adapters that analyze Instagram accounts, hashtags and blogs."""

from strategist.services.enrichment.base import EnrichmentResult
from strategist.services.enrichment.blog import BlogAnalyzer
from strategist.services.enrichment.hashtag import HashtagSearchAnalyzer
from strategist.services.enrichment.instagram import InstagramAnalyzer

__all__ = [
    "BlogAnalyzer",
    "EnrichmentResult",
    "HashtagSearchAnalyzer",
    "InstagramAnalyzer",
]

"""
Модуль обнаружения кандидатов на idle.
Содержит ранжирование и проход опроса источников наград.
"""

from .ranker import CandidateRanker, MergePolicy, RankResult, merge_records, direct_hits, order_catalog
from .service import CandidateDiscovery, DiscoveryResult

__all__ = [
    'CandidateRanker',
    'MergePolicy',
    'RankResult',
    'merge_records',
    'direct_hits',
    'order_catalog',
    'CandidateDiscovery',
    'DiscoveryResult',
]

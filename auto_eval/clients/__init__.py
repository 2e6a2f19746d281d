"""Shared external API clients."""

from auto_eval.clients.assistants import AssistantsClient
from auto_eval.clients.cache import SHARED_NHTSA_CACHE, SHARED_SEARCH_CACHE, TTLCache
from auto_eval.clients.nhtsa import NHTSAClient
from auto_eval.clients.scraper import ListingScraper, is_marketplace_url
from auto_eval.clients.search import SearchClient
from auto_eval.clients.supabase import SupabaseAuditStore

__all__ = [
    "AssistantsClient",
    "ListingScraper",
    "NHTSAClient",
    "SHARED_NHTSA_CACHE",
    "SHARED_SEARCH_CACHE",
    "SearchClient",
    "SupabaseAuditStore",
    "TTLCache",
    "is_marketplace_url",
]

"""Semantic match capability: Claude client, response cache and cascade fallback."""

from backend.semantic.response_cache import SemanticResponseCache, make_cache_key
from backend.semantic.fallback import SemanticFallbackHandler, build_fallback_handler
from backend.semantic.claude_client import ClaudeSemanticClient, SemanticMatch, parse_semantic_response

__all__ = [
    "SemanticResponseCache",
    "make_cache_key",
    "SemanticFallbackHandler",
    "build_fallback_handler",
    "ClaudeSemanticClient",
    "SemanticMatch",
    "parse_semantic_response",
]

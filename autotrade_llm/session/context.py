"""
Per-session state passed explicitly through the orchestrator and dispatcher.

A new SessionContext is created at the start of every session, so counters
never leak between sessions or profiles.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List


@dataclass
class CacheStats:
    """Prompt-cache counters for one session"""
    openai_cached_tokens: int = 0
    gemini_cache_hits: int = 0
    total_requests: int = 0

    @property
    def hit_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.gemini_cache_hits / self.total_requests

    def record(self, provider: str, cached_tokens: int = 0, cache_hit: bool = False):
        self.total_requests += 1
        if provider == "openai":
            self.openai_cached_tokens += cached_tokens
        elif cache_hit:
            self.gemini_cache_hits += 1

    def as_dict(self) -> dict:
        return {
            "openai_cached_tokens": self.openai_cached_tokens,
            "gemini_cache_hits": self.gemini_cache_hits,
            "total_requests": self.total_requests,
            "hit_rate": round(self.hit_rate, 4),
        }


@dataclass
class SessionContext:
    profile: str
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cache_stats: CacheStats = field(default_factory=CacheStats)
    tool_calls: List[str] = field(default_factory=list)
    thoughts: List[str] = field(default_factory=list)
    orders_submitted: int = 0
    turns: int = 0

"""Instrument resolution: free text -> equity ticker or mutual fund scheme code."""

import logging
import re

from app.config import SYMBOL_ALIASES
from app.services.mf_registry import MfScheme, MutualFundRegistry, mf_registry
from app.services.quote_source import QuoteSource, SearchQuote, quote_source

logger = logging.getLogger(__name__)

SCHEME_CODE_RE = re.compile(r"\d{5,8}")
INDIAN_EXCHANGE_SUFFIXES = (".NS", ".BO")


def extract_scheme_code(text: str | None) -> str | None:
    match = SCHEME_CODE_RE.search(text or "")
    return match.group(0) if match else None


def stock_candidates(name: str) -> list[str]:
    """Raw-name ticker guesses: NAME, NAME.NS, NAME.BO.

    A name that already looks like a ticker (has "." or "=") is used as is.
    """
    cleaned = re.sub(r"\s+", "", name.strip().upper())
    if not cleaned:
        return []
    if "=" in cleaned or "." in cleaned:
        return [cleaned]
    return [cleaned] + [f"{cleaned}{suffix}" for suffix in INDIAN_EXCHANGE_SUFFIXES]


def normalize_search_text(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


def tokenize_search_text(value: str) -> list[str]:
    return [t for t in re.sub(r"[^a-z0-9]+", " ", value.lower()).split() if t]


def score_scheme_match(query: str, scheme_name: str) -> int:
    """Fuzzy relevance of a scheme name for a query; 0 means no match.

    Exact normalized match +120, prefix +90, substring +70, +20 per query
    token found in the name, minus a length penalty (max 25) that favours
    shorter, more precise names.
    """
    q_norm = normalize_search_text(query)
    n_norm = normalize_search_text(scheme_name)
    if not q_norm or not n_norm:
        return 0

    score = 0
    if n_norm == q_norm:
        score += 120
    if n_norm.startswith(q_norm):
        score += 90
    if q_norm in n_norm:
        score += 70

    name_tokens = tokenize_search_text(scheme_name)
    for q_token in tokenize_search_text(query):
        if any(nt.startswith(q_token) or q_token in nt for nt in name_tokens):
            score += 20

    score -= min(25, len(scheme_name) // 12)
    return score


def _is_indian_listing(quote: SearchQuote) -> bool:
    return (quote.symbol or "").upper().endswith(INDIAN_EXCHANGE_SUFFIXES)


class InstrumentResolver:
    def __init__(
        self,
        quotes: QuoteSource,
        registry: MutualFundRegistry,
        aliases: dict[str, str] | None = None,
    ):
        self.quotes = quotes
        self.registry = registry
        self.aliases = SYMBOL_ALIASES if aliases is None else aliases

    def alias_for(self, name: str) -> str | None:
        return self.aliases.get(name.strip().upper())

    async def resolve_equity_symbol(
        self, query: str, preferred_types: tuple[str, ...] = ("EQUITY",)
    ) -> str | None:
        """Best single ticker for a query, preferring NSE/BSE listings."""
        cleaned = query.strip()
        if not cleaned:
            return None
        alias = self.alias_for(cleaned)
        if alias:
            return alias

        quotes = [q for q in await self.quotes.search(cleaned, count=8) if q.symbol]
        typed = [q for q in quotes if q.quote_type in preferred_types] if preferred_types else quotes
        for pool in (
            [q for q in typed if _is_indian_listing(q)],
            typed,
            [q for q in quotes if q.quote_type == "EQUITY" and _is_indian_listing(q)],
            quotes,
        ):
            if pool:
                return pool[0].symbol
        return None

    async def resolve_top_symbols(
        self, query: str, preferred_types: tuple[str, ...] = ("EQUITY",), limit: int = 3
    ) -> list[str]:
        cleaned = query.strip()
        if not cleaned:
            return []
        quotes = await self.quotes.search(cleaned, count=12)
        typed = [q for q in quotes if q.quote_type in preferred_types] if preferred_types else quotes
        ranked = [q for q in typed if _is_indian_listing(q)] + [
            q for q in typed if not _is_indian_listing(q)
        ]

        unique: list[str] = []
        alias = self.alias_for(cleaned)
        if alias:
            unique.append(alias)
        for q in ranked:
            if q.symbol and q.symbol not in unique:
                unique.append(q.symbol)
        return unique[:limit]

    async def rank_schemes(self, query: str, limit: int = 6) -> list[MfScheme]:
        schemes = await self.registry.list_schemes()
        scored = [(score_scheme_match(query, s.name), s) for s in schemes]
        ranked = sorted((pair for pair in scored if pair[0] > 0), key=lambda pair: -pair[0])
        return [s for _, s in ranked[:limit]]


# Global instance
instrument_resolver = InstrumentResolver(quote_source, mf_registry)

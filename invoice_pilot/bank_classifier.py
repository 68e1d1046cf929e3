"""Ordered pattern matcher that labels the institution behind a message."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Literal

from .utils import title_case

logger = logging.getLogger(__name__)

# Order matters: the first pattern found in the text wins.
DEFAULT_BANK_PATTERNS = [
    # Digital banks
    "wise", "revolut", "nubank", "bunq", "monzo", "starling", "chime", "venmo",
    "paypal", "transferwise", "wise.com", "revolut.com", "nubank.com.br",
    # Traditional banks
    "santander", "bbva", "caixabank", "ing", "deutsche bank", "commerzbank",
    "hsbc", "barclays", "lloyds", "rbs", "natwest", "standard chartered",
    "bnp paribas", "societe generale", "credit agricole", "dexia", "fortis",
    "kbc", "rabobank", "abn amro", "asn", "triodos", "moneco",
    # Spanish banks
    "banco santander", "caixa bank", "la caixa", "bankinter", "sabadell",
    "popular", "galicia", "santanderrio", "macro", "hipotecario", "provincia",
    # Portuguese banks
    "bcp", "bpi", "caixa geral de depósitos", "millennium bcp", "banco espírito santo",
    # Italian banks
    "intesa sanpaolo", "unicredit", "banco popolare", "monte dei paschi", "mediolanum",
    # French banks
    "lcl", "bpce", "caisse d'epargne",
    # German banks
    "hypovereinsbank", "sparkasse", "volksbank",
    # Dutch banks
    "asn bank", "triodos bank", "moneco bank",
    # Polish banks
    "pkobp", "millennium", "bank millennium",
    # Czech banks
    "csob", "kb", "raiffeisen", "moneta", "fio",
    # Austrian banks
    "erste bank", "bank austria",
    # Swiss banks
    "ubs", "credit suisse", "zkb", "postfinance",
    # Nordic banks
    "nordea", "dnb", "handelsbanken", "seb", "swedbank", "sampo",
    # Other digital services
    "n26", "tidal", "october", "mollie", "adyen", "stripe",
    # Brokerages and trading platforms
    "interactive brokers", "ibkr", "charles schwab", "etrade", "td ameritrade", " fidelity",
    "robinhood", "webull", "coinbase", "binance", "kraken", "coinbase pro", "binance us",
    # Banks with 'banco' in name
    "banco", "banco do brasil", "banco itaú", "banco bradesco",
    # Generic indicators
    "bank", "financial", "fintech", "fiscal", "tributary",
]


class BankClassifier:
    """First-match-wins, case-insensitive classifier.

    `substring` mode matches anywhere in the text, so short patterns such as
    "ing" also hit inside unrelated words. `word` mode requires the pattern to
    stand on word boundaries.
    """

    def __init__(
        self,
        patterns: Iterable[str] | None = None,
        match_mode: Literal["substring", "word"] = "substring",
    ) -> None:
        patterns = list(patterns) if patterns else DEFAULT_BANK_PATTERNS
        self.patterns = [pattern.lower() for pattern in patterns if pattern.strip()]
        self.match_mode = match_mode
        self._word_patterns = [
            re.compile(rf"(?<!\w){re.escape(pattern.strip())}(?!\w)") for pattern in self.patterns
        ]

    def classify(self, text: str) -> str | None:
        """Return the title-cased name of the first matching pattern."""
        haystack = text.lower()
        for index, pattern in enumerate(self.patterns):
            if self._matches(index, pattern, haystack):
                logger.debug("Bank pattern '%s' matched", pattern)
                return title_case(pattern)
        return None

    def _matches(self, index: int, pattern: str, haystack: str) -> bool:
        if self.match_mode == "word":
            return self._word_patterns[index].search(haystack) is not None
        return pattern in haystack

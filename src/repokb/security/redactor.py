"""Secret detection and redaction for indexed text.

Detection is data driven: a table of structural patterns (one category each)
plus a single entropy-based catch-all for random-looking tokens. Adding a
pattern is a new table row, not new code.
"""
from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

REDACTION_MARKER = "[REDACTED]"
HIGH_ENTROPY_CATEGORY = "High-entropy string"

DEFAULT_ENTROPY_THRESHOLD = 3.5  # bits per character
DEFAULT_MIN_TOKEN_LENGTH = 16

# Re-scanning stops once the text is stable; patterns never lengthen text,
# so this bound is only reached on pathological input.
_MAX_PASSES = 5

_NOT_MARKER = r"(?!\[REDACTED\])"
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")
# Quoting and sentence punctuation around a token is not part of it.
_TOKEN_EDGE_CHARS = "\"'`()[]{}<>,;:."
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class SecretRule:
    category: str
    pattern: re.Pattern[str]


SECRET_RULES: list[SecretRule] = [
    SecretRule("GitHub Personal Access Token", re.compile(r"ghp_[a-zA-Z0-9]{36}")),
    SecretRule("GitHub Fine-grained Token", re.compile(r"github_pat_[a-zA-Z0-9_]{82}")),
    SecretRule("AWS Access Key ID", re.compile(r"AKIA[0-9A-Z]{16}")),
    SecretRule("AWS Access Key", re.compile(r"aws_access_key_id\s*=\s*[A-Z0-9]{20}", re.IGNORECASE)),
    SecretRule(
        "AWS Secret Key",
        re.compile(r"aws_secret_access_key\s*=\s*[a-zA-Z0-9/+=]{40}", re.IGNORECASE),
    ),
    SecretRule("JWT Token", re.compile(r"eyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+")),
    SecretRule(
        "Private Key",
        re.compile(
            r"-----BEGIN\s+(?:RSA\s+)?PRIVATE KEY-----[\s\S]*?-----END\s+(?:RSA\s+)?PRIVATE KEY-----"
        ),
    ),
    SecretRule(
        "Password",
        re.compile(r"password\s*[:=]\s*" + _NOT_MARKER + r"[\"']?[^\s\"']{8,}[\"']?", re.IGNORECASE),
    ),
    SecretRule(
        "API Key",
        re.compile(r"api[_-]?key\s*[:=]\s*" + _NOT_MARKER + r"[\"']?[a-zA-Z0-9_-]{20,}[\"']?", re.IGNORECASE),
    ),
]


@dataclass(frozen=True)
class Finding:
    category: str
    count: int


@dataclass(frozen=True)
class RedactionResult:
    redacted_text: str
    findings: list[Finding] = field(default_factory=list)

    @property
    def has_secrets(self) -> bool:
        return bool(self.findings)


def shannon_entropy(s: str) -> float:
    """Shannon entropy of `s` in bits per character."""
    if not s:
        return 0.0
    n = len(s)
    return -sum((c / n) * math.log2(c / n) for c in Counter(s).values())


@dataclass
class Redactor:
    """Mask secret-like substrings with REDACTION_MARKER.

    `redact` is idempotent and never raises: on unexpected input it returns
    the original text with no findings.
    """

    rules: list[SecretRule] = field(default_factory=lambda: list(SECRET_RULES))
    entropy_threshold: float = DEFAULT_ENTROPY_THRESHOLD
    min_token_length: int = DEFAULT_MIN_TOKEN_LENGTH

    def is_high_entropy(self, token: str) -> bool:
        if len(token) < self.min_token_length:
            return False
        return shannon_entropy(token) > self.entropy_threshold

    def redact(self, text: str) -> RedactionResult:
        try:
            counts: Counter[str] = Counter()
            current = text
            for _ in range(_MAX_PASSES):
                updated = self._redact_once(current, counts)
                if updated == current:
                    break
                current = updated
            findings = [Finding(category=c, count=n) for c, n in counts.items()]
            return RedactionResult(redacted_text=current, findings=findings)
        except Exception as e:
            logger.warning(f"Redaction skipped, returning text unmodified: {e}")
            return RedactionResult(redacted_text=text, findings=[])

    def _redact_once(self, text: str, counts: Counter[str]) -> str:
        for rule in self.rules:
            text, n = rule.pattern.subn(REDACTION_MARKER, text)
            if n:
                counts[rule.category] += n

        seen: set[str] = set()
        candidates = (
            piece.strip(_TOKEN_EDGE_CHARS)
            for word in _WHITESPACE_RE.split(text)
            for piece in word.split(REDACTION_MARKER)
        )
        for token in candidates:
            if token in seen or token in REDACTION_MARKER:
                continue
            seen.add(token)
            # scored on the alphanumeric core, replaced as written
            if not self.is_high_entropy(_NON_ALNUM_RE.sub("", token)):
                continue
            n = text.count(token)
            if n:
                text = text.replace(token, REDACTION_MARKER)
                counts[HIGH_ENTROPY_CATEGORY] += n
        return text


@dataclass
class ScanReport:
    """Per-build aggregation of redaction findings, used only for reporting."""

    files_scanned: int = 0
    files_with_secrets: int = 0
    by_category: Counter[str] = field(default_factory=Counter)

    def add(self, result: RedactionResult) -> None:
        self.files_scanned += 1
        if result.has_secrets:
            self.files_with_secrets += 1
        for f in result.findings:
            self.by_category[f.category] += f.count

    @property
    def total_findings(self) -> int:
        return sum(self.by_category.values())

    def render(self) -> str:
        if self.files_with_secrets == 0:
            return "No secrets detected"
        lines = [f"Secrets detected in {self.files_with_secrets} file(s):"]
        for category in sorted(self.by_category):
            lines.append(f"  - {category}: {self.by_category[category]} occurrence(s)")
        return "\n".join(lines)

"""
Response normalizer for free-text validation replies.

A validation model answers in prose ("The correct name should be: **JB Hi-Fi**
[1]").  Each field has an ordered chain of extraction rules; the first rule
that matches wins.  Rules are plain functions returning ``Matched`` or
``Unmatched`` so each one can be tested on its own.
"""
import re
from dataclasses import dataclass
from typing import Callable, Sequence, Union


@dataclass(frozen=True)
class Matched:
    value: str


@dataclass(frozen=True)
class Unmatched:
    raw_text: str


Outcome = Union[Matched, Unmatched]
Rule = Callable[[str], Outcome]

MAX_ANSWER_LEN = 50

CITATION_RE = re.compile(r'\[[\d,\s]+\]')
STORE_EXPLANATION_WORDS = ("not the official", "format", "Therefore", "corrected")
STORE_REJECT_WORDS = ("format", "standardized")


def strip_citations(text: str) -> str:
    """Drop citation markers such as [1] or [1, 2]."""
    return CITATION_RE.sub("", text or "").strip()


def _clean(value: str) -> str:
    """Peel surrounding quotes and bold markers, in any nesting order."""
    previous = None
    while value != previous:
        previous = value
        value = value.strip().strip("*").strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
    return value


def apply_rules(text: str, rules: Sequence[Rule]) -> Outcome:
    for rule in rules:
        outcome = rule(text)
        if isinstance(outcome, Matched):
            return outcome
    return Unmatched(text)


# ── Store name rules ─────────────────────────────────────────────────────────

def _store_pattern_rule(pattern: str, flags: int = 0) -> Rule:
    compiled = re.compile(pattern, flags)

    def rule(text: str) -> Outcome:
        m = compiled.search(text)
        if m:
            candidate = _clean(m.group(1))
            lower = candidate.lower()
            if candidate and len(candidate) <= MAX_ANSWER_LEN and not any(w in lower for w in STORE_REJECT_WORDS):
                return Matched(candidate)
        return Unmatched(text)

    rule.__name__ = f"match_{pattern[:20]}"
    return rule


store_should_be = _store_pattern_rule(r'should be:\s*\*?\*?([^*\n]+)\*?\*?', re.I)
store_therefore = _store_pattern_rule(r'Therefore,\s+the\s+corrected[^:]*:\s*\*?\*?([^*\n]+)\*?\*?', re.I)
store_bold = _store_pattern_rule(r'\*\*([^*]+)\*\*')
store_bare_line = _store_pattern_rule(r'^([A-Za-z0-9 \t&]+)$', re.M)


def store_first_short_line(text: str) -> Outcome:
    for line in text.split("\n"):
        line = _clean(line)
        if line and len(line) <= MAX_ANSWER_LEN and not any(w in line for w in STORE_EXPLANATION_WORDS):
            return Matched(line)
    return Unmatched(text)


def truncated_prefix(text: str) -> Outcome:
    text = text.strip()
    if not text:
        return Unmatched(text)
    return Matched(text[:MAX_ANSWER_LEN].strip())


STORE_RULES: list[Rule] = [
    store_should_be,
    store_therefore,
    store_bold,
    store_bare_line,
    store_first_short_line,
    truncated_prefix,
]


# ── Warranty rules ───────────────────────────────────────────────────────────

def _period_rule(unit: str) -> Rule:
    compiled = re.compile(rf'(\d+)\s*{unit}s?\b', re.I)

    def rule(text: str) -> Outcome:
        m = compiled.search(text)
        if m:
            n = int(m.group(1))
            return Matched(f"1 {unit}" if n == 1 else f"{n} {unit}s")
        return Unmatched(text)

    rule.__name__ = f"match_{unit}s"
    return rule


def first_sentence(text: str) -> Outcome:
    sentence = text.split(".")[0].strip()
    if sentence and len(sentence) <= MAX_ANSWER_LEN:
        return Matched(sentence)
    return Unmatched(text)


def ellipsis_prefix(text: str) -> Outcome:
    text = text.strip()
    if not text:
        return Unmatched(text)
    return Matched(text[:MAX_ANSWER_LEN] + "...")


WARRANTY_RULES: list[Rule] = [
    _period_rule("year"),
    _period_rule("month"),
    _period_rule("day"),
    _period_rule("week"),
    first_sentence,
    ellipsis_prefix,
]


# ── Description / brand ──────────────────────────────────────────────────────

def plain_answer(text: str) -> Outcome:
    value = _clean(text.split("\n")[0]) if text.strip() else ""
    return Matched(value) if value else Unmatched(text)


TEXT_RULES: list[Rule] = [plain_answer]


def normalize_store(text: str) -> Outcome:
    return apply_rules(strip_citations(text), STORE_RULES)


def normalize_warranty(text: str) -> Outcome:
    return apply_rules(strip_citations(text), WARRANTY_RULES)


def normalize_text(text: str) -> Outcome:
    return apply_rules(strip_citations(text), TEXT_RULES)

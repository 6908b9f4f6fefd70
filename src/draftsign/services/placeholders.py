"""
Unknown-placeholder extraction and substitution.

Drafts mark information the user still has to supply with bracketed
placeholders such as ``[Effective Date]``. This module finds them, turns
them into display labels, substitutes user-supplied values and tracks
which unknowns the user has dismissed.
"""

import re
from dataclasses import dataclass, field

PLACEHOLDER_PATTERN = re.compile(r"\[([^\]]+)\]")

# Ordered: the first category whose keywords match wins
UNKNOWN_CATEGORY_KEYWORDS = {
    "party": ["name", "client", "company", "employer", "employee", "landlord", "tenant", "party"],
    "date": ["date", "start", "end", "completion", "deadline"],
    "money": ["amount", "salary", "rent", "fee", "cost", "price", "payment", "$"],
    "location": ["address", "location", "jurisdiction", "state", "city", "country"],
    "time": ["duration", "period", "hours", "days", "weeks", "months", "years", "schedule"],
}


def normalize_label(raw: str) -> str:
    """Title-case each word of a placeholder's inner text for display."""
    return " ".join(
        word[:1].upper() + word[1:].lower() for word in raw.strip().split(" ")
    )


def find_placeholders(text: str) -> list[str]:
    """
    Return the raw inner text of every placeholder, in order of appearance.

    Raw forms are deduplicated exactly; two spellings of the same label
    (``[date]`` and ``[Date]``) are both returned.
    """
    seen: set[str] = set()
    raw_forms: list[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(text or ""):
        raw = match.group(1)
        if raw not in seen:
            seen.add(raw)
            raw_forms.append(raw)
    return raw_forms


def extract_unknowns(text: str) -> list[str]:
    """
    Return unique display labels for the placeholders in text.

    Labels keep order of first appearance and are deduplicated
    case-insensitively on the normalized form.
    """
    seen: set[str] = set()
    labels: list[str] = []
    for raw in find_placeholders(text):
        label = normalize_label(raw)
        if not label:
            continue
        key = label.casefold()
        if key not in seen:
            seen.add(key)
            labels.append(label)
    return labels


def raw_forms_for_label(text: str, label: str) -> list[str]:
    """All raw placeholder spellings in text that display as label."""
    key = normalize_label(label).casefold()
    return [raw for raw in find_placeholders(text) if normalize_label(raw).casefold() == key]


def replace(block_text: str, replacements: dict[str, str]) -> str:
    """
    Substitute placeholders with values.

    Every occurrence of ``[key]`` is replaced, matching the bracket contents
    exactly. Keys absent from the text are no-ops. Other bracketed text is
    left alone.
    """
    updated = block_text
    for key, value in replacements.items():
        if not key:
            continue
        updated = updated.replace(f"[{key}]", value)
    return updated


def categorize_unknown(label: str) -> str:
    """Group an unknown into party, date, money, location, time or other."""
    lowered = label.lower()
    for category, keywords in UNKNOWN_CATEGORY_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return category
    return "other"


@dataclass
class UnknownTracker:
    """
    Active and dismissed unknowns for one contract.

    Dismissal drops a label from active tracking without touching the
    text; dismissed labels are handed to the drafting service as
    "do not reintroduce" context on the next regeneration.
    """

    active: list[str] = field(default_factory=list)
    dismissed: list[str] = field(default_factory=list)

    @classmethod
    def from_text(cls, text: str, dismissed: list[str] | None = None) -> "UnknownTracker":
        tracker = cls(dismissed=list(dismissed or []))
        tracker.refresh(text)
        return tracker

    def _is_dismissed(self, label: str) -> bool:
        key = normalize_label(label).casefold()
        return any(normalize_label(d).casefold() == key for d in self.dismissed)

    def refresh(self, text: str) -> list[str]:
        """Re-derive active unknowns from text, skipping dismissed labels."""
        self.active = [label for label in extract_unknowns(text) if not self._is_dismissed(label)]
        return self.active

    def dismiss(self, label: str) -> None:
        normalized = normalize_label(label)
        if not normalized:
            return
        if not self._is_dismissed(normalized):
            self.dismissed.append(normalized)
        self.active = [a for a in self.active if a.casefold() != normalized.casefold()]

    def clear_dismissed(self) -> None:
        self.dismissed = []

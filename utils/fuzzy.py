"""Fuzzy matching utilities"""

from typing import Dict, List, Optional

from rapidfuzz import fuzz, process

from config import settings


def fuzzy_match_label(
    label: str,
    synonym_dict: Dict[str, List[str]],
    threshold: Optional[int] = None
) -> Optional[str]:
    """
    Fuzzy match a sheet label against a synonym dictionary

    Labels are compared whole with fuzz.ratio, so "answers" lands on
    "answer" but "ai" never matches a longer synonym that contains it.

    Args:
        label: Normalized label text
        synonym_dict: Dictionary of canonical -> synonyms
        threshold: Match threshold (0-100), defaults to config

    Returns:
        Canonical name if match found, None otherwise
    """
    threshold = threshold or settings.FUZZY_MATCH_THRESHOLD

    choices = {}
    for canonical, synonyms in synonym_dict.items():
        choices.setdefault(canonical, canonical)
        for synonym in synonyms:
            choices.setdefault(synonym, canonical)

    if label in choices:
        return choices[label]

    match = process.extractOne(label, list(choices), scorer=fuzz.ratio, score_cutoff=threshold)
    if match is None:
        return None
    return choices[match[0]]

"""Derived regularization status of an uncurated pair."""

import enum
from typing import Optional

from ..entities.hierarchy import Hierarchy
from ..entities.mapping import Mapping, UncuratedPair


class RegularizationStatus(str, enum.Enum):
    UNMAPPED = "unmapped"
    AUTO_MAPPED = "auto_mapped"
    COMPLETE = "complete"


def derive_status(pair: UncuratedPair,
                  mapping: Optional[Mapping],
                  hierarchy: Optional[Hierarchy]) -> RegularizationStatus:
    """
    Status of a pair from the mapping store and the canonical hierarchy.

    Never stored. A pair with no mapping whose text equals a canonical
    pair is effectively auto-mapped even before a sweep persists it.
    """
    if mapping is not None:
        if mapping.is_complete:
            return RegularizationStatus.COMPLETE
        return RegularizationStatus.AUTO_MAPPED

    if hierarchy is not None and hierarchy.contains(pair.make_text, pair.model_text):
        return RegularizationStatus.AUTO_MAPPED

    return RegularizationStatus.UNMAPPED

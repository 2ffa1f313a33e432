#!/usr/bin/env python3
"""
Common Timeline Module

Restricts every admitted subject to the instants observed by all of them,
so downstream analysis receives equal-length, time-synchronized series.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

import pandas as pd

from coverage_analysis import timeline_instants
from preprocessing import SUBJECT_COL, TIME_COL, drop_duplicate_timestamps

logger = logging.getLogger(__name__)


@dataclass
class CommonTimeline:
    """Result of intersecting the admitted subjects' timestamp sets."""
    common_timestamps: pd.DatetimeIndex
    common_count: Dict[str, int] = field(default_factory=dict)
    max_common_count: int = 0
    timelines: Dict[str, pd.DataFrame] = field(default_factory=dict)

    @property
    def subject_ids(self) -> List[str]:
        return sorted(self.timelines)

    @property
    def is_empty(self) -> bool:
        return len(self.timelines) == 0 or len(self.common_timestamps) == 0


def resolve_common_timeline(timelines: Dict[str, pd.DataFrame]) -> CommonTimeline:
    """
    Intersect the timestamp sets of all admitted subjects.

    Each timeline is filtered to the common instants and collapsed again
    (first occurrence kept) so all filtered timelines share one timestamp set.

    Args:
        timelines: {subject_id: deduplicated timeline} for admitted subjects

    Returns:
        CommonTimeline; empty (not an error) when no subjects were admitted
        or the intersection is empty
    """
    if not timelines:
        logger.warning("  No admitted subjects - common timeline is empty")
        return CommonTimeline(common_timestamps=pd.DatetimeIndex([], tz='UTC'))

    subject_ids = sorted(timelines)
    instant_sets = {sid: timeline_instants(timelines[sid]).unique() for sid in subject_ids}

    common = instant_sets[subject_ids[0]]
    for sid in subject_ids[1:]:
        common = common.intersection(instant_sets[sid])
    common = common.sort_values()

    common_count = {sid: int(instant_sets[sid].isin(common).sum()) for sid in subject_ids}
    max_common_count = max(common_count.values())

    inconsistent = [sid for sid, n in common_count.items() if n != len(common)]
    if inconsistent:
        logger.warning(f"  Common count differs from |common| ({len(common)}) for: {inconsistent}")

    filtered = {}
    for sid in subject_ids:
        timeline = timelines[sid]
        if len(timeline) == 0:
            filtered[sid] = timeline.reset_index(drop=True)
            continue
        kept = timeline[timeline[TIME_COL].isin(common)]
        filtered[sid] = drop_duplicate_timestamps(kept)

    if len(common) == 0:
        logger.warning(f"  Timestamp sets of {len(subject_ids)} admitted subjects do not intersect")
    else:
        logger.info(f"  Common timestamps: {len(common)} across {len(subject_ids)} subjects "
                    f"({common[0]} to {common[-1]})")

    return CommonTimeline(
        common_timestamps=common,
        common_count=common_count,
        max_common_count=max_common_count,
        timelines=filtered,
    )


def check_alignment(common: CommonTimeline) -> List[str]:
    """Subjects whose filtered timestamps differ from the common set."""
    expected = common.common_timestamps
    misaligned = []
    for sid in common.subject_ids:
        instants = timeline_instants(common.timelines[sid])
        if len(instants) != len(expected) or not instants.sort_values().equals(expected):
            misaligned.append(sid)
    return misaligned


def alignment_exclusions(common: CommonTimeline) -> List[Dict]:
    """Diagnostics rows for admitted subjects lost because nothing is shared."""
    if not common.is_empty:
        return []
    return [{SUBJECT_COL: sid, 'stage': 'align', 'error': 'EmptyCommonTimeline',
             'reason': 'empty common timeline'}
            for sid in common.subject_ids]

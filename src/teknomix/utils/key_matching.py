#!/usr/bin/env python3
"""
Key matching utilities for harmonic mixing
Maps extractor key names onto the Camelot wheel and scores neighbours.
"""

import re
from typing import List, Dict, Optional, Tuple

# Camelot wheel position per pitch class, one table per scale
MAJOR_CAMELOT = {
    'B': 1, 'F#': 2, 'Gb': 2, 'Db': 3, 'C#': 3, 'Ab': 4, 'G#': 4,
    'Eb': 5, 'D#': 5, 'Bb': 6, 'A#': 6, 'F': 7, 'C': 8, 'G': 9,
    'D': 10, 'A': 11, 'E': 12,
}

MINOR_CAMELOT = {
    'Ab': 1, 'G#': 1, 'Eb': 2, 'D#': 2, 'Bb': 3, 'A#': 3, 'F': 4,
    'C': 5, 'G': 6, 'D': 7, 'A': 8, 'E': 9, 'B': 10, 'F#': 11, 'Gb': 11,
    'Db': 12, 'C#': 12,
}

_CAMELOT_PATTERN = re.compile(r"^(1[0-2]|[1-9])([AB])$")


def to_camelot(key: str, scale: str) -> str:
    """
    Convert a pitch-class name and scale into Camelot notation.

    Minor keys get the "A" ring, everything else the "B" ring. Unmapped keys
    are returned unchanged.
    """
    is_minor = scale == 'minor'
    table = MINOR_CAMELOT if is_minor else MAJOR_CAMELOT
    norm_key = key.replace('sharp', '#').replace('flat', 'b')
    index = table.get(norm_key, 0)
    if index > 0:
        return f"{index}{'A' if is_minor else 'B'}"
    return key


def parse_camelot(code: str) -> Optional[Tuple[int, str]]:
    """Split "8A" into (8, "A"); None for anything that is not a Camelot code"""
    match = _CAMELOT_PATTERN.match(code.strip().upper()) if code else None
    if not match:
        return None
    return int(match.group(1)), match.group(2)


class KeyMatcher:
    """Handles key compatibility on the Camelot wheel"""

    SCORE_LABELS = {3: "perfect", 2: "compatible", 1: "energy shift", 0: "clash"}

    def get_compatibility_score(self, key1: str, key2: str) -> int:
        """
        Get compatibility score between two Camelot keys
        Returns: 3 = same key, 2 = relative or adjacent, 1 = two steps, 0 = clash
        """
        first = parse_camelot(key1)
        second = parse_camelot(key2)
        if first is None or second is None:
            return 0

        (num1, ring1), (num2, ring2) = first, second
        distance = min((num1 - num2) % 12, (num2 - num1) % 12)

        if distance == 0 and ring1 == ring2:
            return 3
        if distance == 0 or (distance == 1 and ring1 == ring2):
            return 2
        if distance == 2 and ring1 == ring2:
            return 1
        return 0

    def analyze_track_flow(self, keys: List[str], names: Optional[List[str]] = None) -> Dict:
        """
        Analyze the harmonic flow of an ordered key list
        Returns statistics about key compatibility
        """
        if len(keys) <= 1:
            return {"transitions": 0, "scores": [], "average_score": 0, "details": []}

        names = names or [str(i + 1) for i in range(len(keys))]
        scores = []
        details = []

        for i in range(len(keys) - 1):
            score = self.get_compatibility_score(keys[i], keys[i + 1])
            scores.append(score)
            details.append({
                "from": keys[i],
                "to": keys[i + 1],
                "score": score,
                "label": self.SCORE_LABELS[score],
                "from_track": names[i],
                "to_track": names[i + 1],
            })

        return {
            "transitions": len(details),
            "scores": scores,
            "average_score": sum(scores) / len(scores),
            "details": details,
        }

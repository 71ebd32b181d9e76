#!/usr/bin/env python3
"""
Tests for Camelot key mapping and harmonic compatibility
"""

import pytest

from teknomix.utils.key_matching import KeyMatcher, parse_camelot, to_camelot


@pytest.mark.parametrize("key,scale,expected", [
    ("A", "minor", "8A"),
    ("C", "major", "8B"),
    ("F#", "minor", "11A"),
    ("Gb", "major", "2B"),
    ("C#", "minor", "12A"),
    ("Ab", "minor", "1A"),
    ("E", "major", "12B"),
    ("Bb", "minor", "3A"),
])
def test_to_camelot(key, scale, expected):
    assert to_camelot(key, scale) == expected


def test_sharp_and_flat_words_are_normalized():
    assert to_camelot("Fsharp", "minor") == "11A"
    assert to_camelot("Bflat", "major") == "6B"


def test_unmapped_key_is_returned_raw():
    assert to_camelot("H", "major") == "H"
    assert to_camelot("", "minor") == ""


def test_parse_camelot():
    assert parse_camelot("8A") == (8, "A")
    assert parse_camelot(" 12b ") == (12, "B")
    assert parse_camelot("13A") is None
    assert parse_camelot("C major") is None
    assert parse_camelot("") is None


class TestKeyMatcher:

    @pytest.mark.parametrize("first,second,score", [
        ("8A", "8A", 3),
        ("8A", "8B", 2),
        ("8A", "9A", 2),
        ("12B", "1B", 2),
        ("8A", "10A", 1),
        ("1A", "11A", 1),
        ("8A", "9B", 0),
        ("8A", "2A", 0),
        ("8A", "unknown", 0),
    ])
    def test_compatibility_score(self, first, second, score):
        matcher = KeyMatcher()
        assert matcher.get_compatibility_score(first, second) == score
        assert matcher.get_compatibility_score(second, first) == score

    def test_track_flow_report(self):
        flow = KeyMatcher().analyze_track_flow(["8A", "9A", "9A", "3B"], ["a", "b", "c", "d"])

        assert flow["transitions"] == 3
        assert flow["scores"] == [2, 3, 0]
        assert flow["average_score"] == pytest.approx(5 / 3)
        assert flow["details"][0]["from_track"] == "a"
        assert flow["details"][2]["label"] == "clash"

    def test_single_track_has_no_transitions(self):
        flow = KeyMatcher().analyze_track_flow(["8A"])
        assert flow["transitions"] == 0
        assert flow["details"] == []

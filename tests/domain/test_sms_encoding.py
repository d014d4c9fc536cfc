"""
Tests for SMS encoding detection and segment counting.

Boundaries: 160/153 chars for GSM-7, 70/67 for UCS-2; one non-GSM-7
character flips the whole message; extended characters count twice.
"""

import pytest

from src.domain.sms_encoding import (
    ENCODING_GSM7,
    ENCODING_UCS2,
    calculate_sms_segments,
    get_non_gsm7_characters,
    requires_ucs2_encoding,
)


class TestGsm7Segments:

    @pytest.mark.parametrize(
        "length, segments, per_segment",
        [(159, 1, 160), (160, 1, 160), (161, 2, 153), (306, 2, 153), (307, 3, 153)],
    )
    def test_boundaries(self, length, segments, per_segment):
        info = calculate_sms_segments("a" * length)

        assert info.encoding == ENCODING_GSM7
        assert info.character_count == length
        assert info.segment_count == segments
        assert info.max_length_per_segment == per_segment

    def test_extended_characters_count_double(self):
        info = calculate_sms_segments("€" * 80)

        assert info.encoding == ENCODING_GSM7
        assert info.character_count == 160
        assert info.segment_count == 1

    def test_extended_character_pushes_over_single_segment(self):
        info = calculate_sms_segments("a" * 159 + "{")

        assert info.character_count == 161
        assert info.segment_count == 2

    def test_danish_letters_stay_gsm7(self):
        assert not requires_ucs2_encoding("Tak for besøget på Æblegården, vi ses igen!")

    def test_e_acute_stays_gsm7(self):
        assert calculate_sms_segments("Café").encoding == ENCODING_GSM7


class TestUcs2Segments:

    @pytest.mark.parametrize(
        "length, segments, per_segment",
        [(69, 1, 70), (70, 1, 70), (71, 2, 67), (134, 2, 67), (135, 3, 67)],
    )
    def test_boundaries(self, length, segments, per_segment):
        text = "ж" * length
        info = calculate_sms_segments(text)

        assert info.encoding == ENCODING_UCS2
        assert info.character_count == length
        assert info.segment_count == segments
        assert info.max_length_per_segment == per_segment

    def test_single_emoji_flips_whole_message(self):
        text = "Thanks for your order! " + "🎉"
        info = calculate_sms_segments(text)

        assert info.encoding == ENCODING_UCS2
        assert info.character_count == len(text)

    def test_non_gsm7_characters_listed_once_in_order(self):
        assert get_non_gsm7_characters("a🎉bжc🎉") == ["🎉", "ж"]

    def test_plain_ascii_has_no_non_gsm7_characters(self):
        assert get_non_gsm7_characters("Hello there") == []

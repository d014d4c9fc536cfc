"""
SMS Encoding - GSM-7 / UCS-2 Detection and Segment Counting
===========================================================

Carriers bill per segment, so templates are checked before they go out.

RULES:
- A message stays GSM-7 only if every character is in the basic or
  extended GSM-7 table. One character outside both flips the whole
  message to UCS-2.
- Extended characters take an escape slot and count as 2.
- Single-segment limits are 160 (GSM-7) and 70 (UCS-2). Longer messages
  are split with a UDH header, leaving 153 / 67 per segment.
- Lowercase Danish æ ø å are GSM-7, as are uppercase Æ Ø Å in the basic table.
"""

import math
from dataclasses import dataclass
from typing import List

GSM7_MAX_LENGTH = 160
GSM7_CONCAT_MAX_LENGTH = 153
UCS2_MAX_LENGTH = 70
UCS2_CONCAT_MAX_LENGTH = 67

ENCODING_GSM7 = "GSM-7"
ENCODING_UCS2 = "UCS-2"

GSM7_BASIC_CHARS = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
    "0123456789"
    " "
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞÆæßÉ !\"#¤%&'()*+,-./:;<=>?¡¿"
    "æøå"
)

GSM7_EXTENDED_CHARS = frozenset("|^€{}[]~\\")


@dataclass(frozen=True)
class SmsEncodingInfo:
    encoding: str
    character_count: int
    segment_count: int
    max_length_per_segment: int

    def to_dict(self) -> dict:
        return {
            "encoding": self.encoding,
            "character_count": self.character_count,
            "segment_count": self.segment_count,
            "max_length_per_segment": self.max_length_per_segment,
        }


def _is_gsm7(char: str) -> bool:
    return char in GSM7_BASIC_CHARS or char in GSM7_EXTENDED_CHARS


def requires_ucs2_encoding(text: str) -> bool:
    """True if any character falls outside the GSM-7 tables."""
    return any(not _is_gsm7(char) for char in text)


def get_non_gsm7_characters(text: str) -> List[str]:
    """Distinct characters forcing UCS-2, in order of first appearance."""
    found: List[str] = []
    for char in text:
        if not _is_gsm7(char) and char not in found:
            found.append(char)
    return found


def _gsm7_length(text: str) -> int:
    return sum(2 if char in GSM7_EXTENDED_CHARS else 1 for char in text)


def calculate_sms_segments(text: str) -> SmsEncodingInfo:
    """
    Work out encoding, billed length and segment count for a message.

    UCS-2 length is counted in code points; astral characters such as
    emoji count once.
    """
    if requires_ucs2_encoding(text):
        encoding = ENCODING_UCS2
        count = len(text)
        single, concat = UCS2_MAX_LENGTH, UCS2_CONCAT_MAX_LENGTH
    else:
        encoding = ENCODING_GSM7
        count = _gsm7_length(text)
        single, concat = GSM7_MAX_LENGTH, GSM7_CONCAT_MAX_LENGTH

    if count <= single:
        return SmsEncodingInfo(encoding, count, 1, single)

    return SmsEncodingInfo(encoding, count, math.ceil(count / concat), concat)

"""
Description Codec
Reads the analytical metadata the upload script packs into a Project Server
project's Description field:

    "Strategic Objective: Digital Transformation | Status: In Progress |
     Health: YELLOW | ROI: 145% | Budget: $2.5M | Alignment: 92%"

Keys are matched case-insensitively with whitespace removed; unknown keys are
ignored. Numeric fields never raise - unreadable numbers decode to 0.
"""

import re
from typing import Any, Dict, Optional

SEGMENT_SEPARATOR = '|'

# Leading numeric prefix, the way "145%" or "92 pts" should read as numbers
_LEADING_NUMBER = re.compile(r'^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?')
_CURRENCY_SYMBOLS = re.compile(r'[$€£¥,\s]')


def parse_number(text: Optional[str]) -> float:
    """Parse the leading number in text, 0 when there is none"""
    if not text:
        return 0
    match = _LEADING_NUMBER.match(text.strip())
    if not match:
        return 0
    value = float(match.group(0))
    return int(value) if value.is_integer() else value


def parse_budget(text: Optional[str]) -> float:
    """"$2.5M" -> 2500000, "$750,000" -> 750000, junk -> 0"""
    if not text:
        return 0
    cleaned = _CURRENCY_SYMBOLS.sub('', text)
    multiplier = 1
    if cleaned[-1:] in ('M', 'm'):
        cleaned = cleaned[:-1]
        multiplier = 1_000_000
    value = parse_number(cleaned)
    if not value:
        return 0
    total = value * multiplier
    return int(total) if float(total).is_integer() else total


def _normalize_key(key: str) -> str:
    return re.sub(r'\s+', '', key).lower()


_DECODERS = {
    'strategicobjective': ('strategicObjective', lambda v: v),
    'status': ('status', lambda v: v),
    'health': ('health', lambda v: v.lower()),
    'roi': ('roi', parse_number),
    'budget': ('budget', parse_budget),
    'alignment': ('alignment', parse_number),
}


def decode_description(text: Optional[str]) -> Dict[str, Any]:
    """Decode a pipe-delimited Description into its recognised fields"""
    fields: Dict[str, Any] = {}
    if not text:
        return fields

    for segment in text.split(SEGMENT_SEPARATOR):
        key, sep, value = segment.partition(':')
        if not sep:
            continue
        decoder = _DECODERS.get(_normalize_key(key))
        if decoder is None:
            continue
        name, transform = decoder
        fields[name] = transform(value.strip())

    return fields

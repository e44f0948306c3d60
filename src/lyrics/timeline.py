# lyrics/timeline.py
"""
LRC text -> ordered LyricLine list, with bilingual lines split into
(text, translation).

Per-line heuristics are plain functions taking a RawEntry and returning
either the lines they produce or None ("not mine"). They are tried in
the order of LINE_STRATEGIES; a line nobody claims is emitted as-is.
"""
from __future__ import annotations

import re
from bisect import bisect_right
from dataclasses import dataclass
from typing import Callable, List, NamedTuple, Optional, Sequence

from core.models import LyricLine

# [mm:ss], [mm:ss.x], [mm:ss.xx], [mm:ss.xxx]; [mm:ss:xx] also accepted
_TS_RE = re.compile(r"\[(\d+):(\d{1,2})(?:[.:](\d{1,3}))?\]")
_LEADING_TS_RE = re.compile(r"^(?:\s*\[\d+:\d{1,2}(?:[.:]\d{1,3})?\])+")

_HAN_RE = re.compile(r"[\u4e00-\u9fa5]")
_KANA_RE = re.compile(r"[\u3040-\u30ff]")
# Latin letters, digits, Hangul, kana, Cyrillic
_FOREIGN_RE = re.compile(r"[a-zA-Z0-9\uac00-\ud7af\u3040-\u30ff\u0400-\u04ff]")

_HEADER_RE = re.compile(r"^(?:ti|ar|al|by|title|artist|album)\s*[:：]", re.IGNORECASE)
_CREDIT_SPLIT_RE = re.compile(r"\s{2,}| / | \| ")

CREDIT_KEYWORDS = (
    "作词", "作曲", "编曲", "制作人", "监制", "录音", "混音", "母带", "演唱", "歌手",
    "作詞", "編曲", "製作人", "監製", "錄音", "和声", "和聲",
    "Lyrics", "Lyricist", "Composer", "Arranger", "Producer", "Artist", "Vocals", "Words", "Music",
)

# checked in this order; the first one that leaves text on both sides wins
DELIMITERS = ("//", "|", "  ", " / ")


@dataclass(frozen=True)
class SplitThresholds:
    merge_window: float = 0.1               # seconds
    leading_foreign_max_tokens: int = 3     # "Heat Waves 热浪"
    trailing_foreign_max_tokens: int = 2    # "不亏不欠 We don't owe"
    foreign_char_override: int = 5


DEFAULT_THRESHOLDS = SplitThresholds()


class RawEntry(NamedTuple):
    time: float
    text: str


LineStrategy = Callable[[RawEntry, SplitThresholds], Optional[List[LyricLine]]]


def _ts_to_ms(mm: str, ss: str, frac: str | None) -> int:
    m = int(mm)
    s = int(ss)
    if frac is None:
        ms = 0
    elif len(frac) == 1:
        ms = int(frac) * 100
    elif len(frac) == 2:
        ms = int(frac) * 10
    else:
        ms = int(frac[:3])
    return (m * 60 + s) * 1000 + ms


def _ms_to_ts(ms: int) -> str:
    if ms < 0:
        ms = 0
    total_s = ms // 1000
    m = total_s // 60
    s = total_s % 60
    cs = (ms % 1000) // 10
    return f"{m:02d}:{s:02d}.{cs:02d}"


def format_timestamp(seconds: float) -> str:
    """Seconds -> mm:ss.xx"""
    return _ms_to_ts(int(round(seconds * 1000)))


def parse_raw_entries(lrc_text: str | None) -> List[RawEntry]:
    """
    One entry per leading timestamp, sorted by time (stable).
    Lines without a timestamp or without text are dropped.
    """
    out: List[RawEntry] = []
    if not lrc_text:
        return out

    for raw_line in lrc_text.splitlines():
        head = _LEADING_TS_RE.match(raw_line)
        if not head:
            continue

        text = raw_line[head.end():].strip()
        if not text:
            continue

        for m in _TS_RE.finditer(head.group(0)):
            ms = _ts_to_ms(m.group(1), m.group(2), m.group(3))
            out.append(RawEntry(ms / 1000, text))

    out.sort(key=lambda e: e.time)
    return out


# --- classification ---

def is_credit_line(text: str) -> bool:
    return any(kw in text for kw in CREDIT_KEYWORDS)


def is_metadata_line(text: str) -> bool:
    if is_credit_line(text):
        return True
    if _HEADER_RE.match(text):
        return True
    if ("(" in text and ")" in text) or ("（" in text and "）" in text):
        return True
    return " - " in text


# --- strategies ---

def split_metadata(entry: RawEntry, thresholds: SplitThresholds) -> Optional[List[LyricLine]]:
    text = entry.text
    if not is_metadata_line(text):
        return None

    if is_credit_line(text) and ("  " in text or " / " in text):
        parts = [p.strip() for p in _CREDIT_SPLIT_RE.split(text) if p.strip()]
        return [LyricLine(time=entry.time, text=p) for p in parts]

    return [LyricLine(time=entry.time, text=text)]


def split_explicit_delimiter(entry: RawEntry, thresholds: SplitThresholds) -> Optional[List[LyricLine]]:
    text = entry.text
    for delimiter in DELIMITERS:
        idx = text.find(delimiter)
        if idx == -1:
            continue
        original = text[:idx].strip()
        translation = text[idx + len(delimiter):].strip()
        if original and translation:
            return [LyricLine(time=entry.time, text=original, translation=translation)]
    return None


def split_kana_han(entry: RawEntry, thresholds: SplitThresholds) -> Optional[List[LyricLine]]:
    """Japanese followed by a Chinese rendering, separated by whitespace."""
    text = entry.text
    if not _KANA_RE.search(text):
        return None

    parts = text.split()
    for i in range(1, len(parts)):
        prefix = " ".join(parts[:i])
        suffix = " ".join(parts[i:])
        if _KANA_RE.search(prefix) and not _KANA_RE.search(suffix) and _HAN_RE.search(suffix):
            return [LyricLine(time=entry.time, text=prefix, translation=suffix)]
    return None


def split_han_foreign(entry: RawEntry, thresholds: SplitThresholds) -> Optional[List[LyricLine]]:
    """
    Han block and foreign block side by side ("Heat Waves 热浪").
    Short foreign fragments are left alone; they're usually a word sung
    inside the line rather than a translation.
    """
    text = entry.text
    han: List[int] = []
    foreign: List[int] = []
    for i, ch in enumerate(text):
        if _HAN_RE.match(ch):
            han.append(i)
        elif _FOREIGN_RE.match(ch):
            foreign.append(i)

    if not han or not foreign:
        return None

    double_space = "  " in text
    many_foreign = len(foreign) > thresholds.foreign_char_override

    if foreign[-1] < han[0]:
        foreign_part = text[:han[0]].strip()
        han_part = text[han[0]:].strip()
        short = len(foreign_part.split()) <= thresholds.leading_foreign_max_tokens and not double_space
        if not short or many_foreign:
            return [LyricLine(time=entry.time, text=foreign_part, translation=han_part)]

    elif han[-1] < foreign[0]:
        han_part = text[:foreign[0]].strip()
        foreign_part = text[foreign[0]:].strip()
        short = len(foreign_part.split()) <= thresholds.trailing_foreign_max_tokens and not double_space
        if not short or many_foreign:
            return [LyricLine(time=entry.time, text=han_part, translation=foreign_part)]

    return None


LINE_STRATEGIES: Sequence[LineStrategy] = (
    split_metadata,
    split_explicit_delimiter,
    split_kana_han,
    split_han_foreign,
)


def _resolve_line(entry: RawEntry, thresholds: SplitThresholds, strategies: Sequence[LineStrategy]) -> List[LyricLine]:
    for strategy in strategies:
        lines = strategy(entry, thresholds)
        if lines is not None:
            return lines
    return [LyricLine(time=entry.time, text=entry.text)]


def parse_timeline(
    lrc_text: str | None,
    thresholds: SplitThresholds = DEFAULT_THRESHOLDS,
    strategies: Sequence[LineStrategy] = LINE_STRATEGIES,
) -> List[LyricLine]:
    """
    Returns LyricLines sorted by time. Two consecutive entries closer than
    `merge_window` (neither of them metadata) become one line, the second
    one as translation. A delimiter in the first entry is split off
    first; the second entry replaces whatever followed it.
    """
    entries = parse_raw_entries(lrc_text)
    meta = [is_metadata_line(e.text) for e in entries]

    result: List[LyricLine] = []
    i = 0
    while i < len(entries):
        cur = entries[i]
        if i + 1 < len(entries):
            nxt = entries[i + 1]
            if nxt.time - cur.time < thresholds.merge_window and not meta[i] and not meta[i + 1]:
                split = split_explicit_delimiter(cur, thresholds)
                text = split[0].text if split else cur.text
                result.append(LyricLine(time=cur.time, text=text, translation=nxt.text))
                i += 2
                continue

        result.extend(_resolve_line(cur, thresholds, strategies))
        i += 1

    return result


# --- helpers for consumers ---

def active_line_index(lines: Sequence[LyricLine], position: float, offset: float = 0.0) -> int:
    """Index of the last line with time <= position + offset, or -1."""
    times = [ln.time for ln in lines]
    return bisect_right(times, position + offset) - 1


def to_lrc(lines: Sequence[LyricLine]) -> str:
    """Translations are written as a second line with the same timestamp."""
    out: List[str] = []
    for ln in lines:
        ts = format_timestamp(ln.time)
        out.append(f"[{ts}]{ln.text}")
        if ln.translation:
            out.append(f"[{ts}]{ln.translation}")
    return "\n".join(out)


def strip_timestamps(lrc: str) -> str:
    """Remove [mm:ss.xx] tokens from LRC to derive plain lyrics."""
    out_lines: list[str] = []
    for line in lrc.splitlines():
        line = line.strip()
        if not line:
            continue
        while line.startswith("[") and "]" in line:
            line = line.split("]", 1)[1].lstrip()
        if line:
            out_lines.append(line)
    return "\n".join(out_lines).strip()

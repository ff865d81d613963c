"""
Description decomposition

Program descriptions in the feed pack structured metadata into free text:

    2023 | 16 | 8/10
    Drama/Thriller · A gripping tale
    Reparto: Actor A · País: España

decompose() turns that blob into a ProgramDetail. It never raises; missing
or malformed parts simply leave the matching fields empty.
"""
import logging
import re
import unicodedata
from datetime import datetime

from guiatv.services.fetch_types import ProgramDetail

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "|"
GENRE_SEPARATOR = "·"
SUBGENRE_SEPARATOR = "/"
DETAIL_DELIMITER = ": "

_VOTES_PATTERN = re.compile(r"^\d/\d")


def strip_diacritics(value: str) -> str:
    """'País' -> 'Pais'"""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def _split_fields(line: str, separator: str, count: int) -> list[str]:
    parts = [part.strip() for part in line.split(separator)][:count]
    return parts + [""] * (count - len(parts))


def _parse_detail_map(lines: list[str]) -> dict[str, str]:
    details: dict[str, str] = {}
    for fragment in "\n".join(lines).split(GENRE_SEPARATOR):
        label, delimiter, value = fragment.partition(DETAIL_DELIMITER)
        value = value.strip()
        if not delimiter or not value:
            continue
        key = strip_diacritics(label.strip().lower())
        if key:
            details[key] = value
    return details


def duration_minutes(start: datetime | None, end: datetime | None) -> int:
    if start is None or end is None:
        return 0
    return int((end - start).total_seconds() / 60)


def _clock(value: datetime | None) -> str:
    return value.strftime("%H:%M") if value is not None else ""


def decompose(
    raw_description: str | None,
    start: datetime | None = None,
    end: datetime | None = None,
    *,
    title: str = "",
    image: str | None = "",
) -> ProgramDetail:
    """
    Extract structured metadata from a program description

    Args:
        raw_description: Untruncated description text
        start: Program start, used for the duration
        end: Program end, used for the duration
        title: Program title copied into the detail
        image: Program image copied into the detail

    Returns:
        ProgramDetail; every field defaults to empty/zero
    """
    detail = ProgramDetail(
        duration_minutes=duration_minutes(start, end),
        title=title or "",
        image=image or "",
        start_time=_clock(start),
        end_time=_clock(end),
    )
    if not isinstance(raw_description, str) or not raw_description:
        return detail

    lines = raw_description.split("\n")
    first = lines[0] if lines else ""
    second = lines[1] if len(lines) > 1 else ""

    detail.year, detail.age_rating, votes = _split_fields(first, FIELD_SEPARATOR, 3)
    detail.votes = votes if _VOTES_PATTERN.match(votes) else ""

    genre_token, detail.synopsis = _split_fields(second, GENRE_SEPARATOR, 2)
    genre, subgenre = (genre_token.split(SUBGENRE_SEPARATOR) + [""])[:2]
    detail.genre = genre.strip()
    detail.subgenre = subgenre.strip()

    detail.detail_map = _parse_detail_map(lines[2:])
    return detail

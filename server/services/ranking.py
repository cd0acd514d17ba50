from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional


# Heuristic, un-normalised weights. Good for picking the top hit of one
# search; scores are not comparable across queries.
EXACT_TRACK_BONUS = 100
PARTIAL_TRACK_BONUS = 50
EXACT_ARTIST_BONUS = 100
PARTIAL_ARTIST_BONUS = 50
QUERY_IN_FULL_NAME_BONUS = 30
QUERY_IN_TRACK_BONUS = 40
WORD_MATCH_BONUS = 25
SPACELESS_EXACT_BONUS = 80
SPACELESS_PARTIAL_BONUS = 50
SPACELESS_FULL_NAME_BONUS = 40

_WHITESPACE = re.compile(r"\s+")


@dataclass
class SearchCandidate:
    name: str
    artists: list[str] = field(default_factory=list)
    popularity: float = 0
    reference: str = ""
    album: Optional[str] = None
    image_url: Optional[str] = None
    score: Optional[float] = None

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else ""

    @classmethod
    def from_spotify(cls, item: dict[str, Any]) -> "SearchCandidate":
        album = item.get("album") if isinstance(item.get("album"), dict) else {}
        images = album.get("images") if isinstance(album.get("images"), list) else []
        image_url = images[0].get("url") if images and isinstance(images[0], dict) else None
        return cls(
            name=item.get("name") or "",
            artists=[a.get("name") or "" for a in item.get("artists") or [] if isinstance(a, dict)],
            popularity=item.get("popularity") or 0,
            reference=item.get("uri") or "",
            album=album.get("name"),
            image_url=image_url,
        )

    def summary(self) -> dict:
        return {"name": self.name, "artist": self.primary_artist, "uri": self.reference}


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _strip_spaces(value: str) -> str:
    return _WHITESPACE.sub("", value)


def _word_matches(query: str, track_name: str, full_name: str) -> float:
    track_words = track_name.split()
    full_words = full_name.split()
    matches = 0.0
    for q_word in (w for w in query.split() if len(w) > 2):
        if any(q_word in t_word or t_word in q_word for t_word in track_words):
            matches += 1
        elif any(q_word in f_word or f_word in q_word for f_word in full_words):
            # artist-only hit
            matches += 0.5
    return matches


def score_candidate(candidate: SearchCandidate, query: str, artist: str, track: str) -> float:
    """Score one candidate; ``query``, ``artist`` and ``track`` must already be normalised."""

    score = candidate.popularity or 0
    track_name = candidate.name.lower()
    artist_names = [a.lower() for a in candidate.artists]
    primary_artist = artist_names[0] if artist_names else ""

    if track:
        if track_name == track:
            score += EXACT_TRACK_BONUS
        elif track in track_name:
            score += PARTIAL_TRACK_BONUS

    if artist:
        if artist in artist_names:
            score += EXACT_ARTIST_BONUS
        elif any(artist in name for name in artist_names):
            score += PARTIAL_ARTIST_BONUS

    if query:
        full_name = f"{primary_artist} {track_name}"
        if query in full_name:
            score += QUERY_IN_FULL_NAME_BONUS
        if query in track_name:
            score += QUERY_IN_TRACK_BONUS

        score += _word_matches(query, track_name, full_name) * WORD_MATCH_BONUS

        query_compact = _strip_spaces(query)
        track_compact = _strip_spaces(track_name)
        if track_compact == query_compact:
            score += SPACELESS_EXACT_BONUS
        elif query_compact in track_compact:
            score += SPACELESS_PARTIAL_BONUS
        if query_compact in _strip_spaces(f"{primary_artist}{track_name}"):
            score += SPACELESS_FULL_NAME_BONUS

    return score


def rank(
    candidates: Iterable[SearchCandidate],
    query: Optional[str] = "",
    artist: Optional[str] = "",
    track: Optional[str] = "",
) -> list[SearchCandidate]:
    """Attach a relevance score to every candidate and return them best first.

    The sort is stable so equal scores keep the upstream search order.
    """

    normalized_query = _normalize(query)
    normalized_artist = _normalize(artist)
    normalized_track = _normalize(track)
    scored = []
    for candidate in candidates:
        candidate.score = score_candidate(candidate, normalized_query, normalized_artist, normalized_track)
        scored.append(candidate)
    return sorted(scored, key=lambda c: c.score, reverse=True)

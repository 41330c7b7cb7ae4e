"""Poster-bearing media items and their wire representation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

PLACEHOLDER_TITLE = 'No content available'

# Wire key -> dataclass field for keys whose names differ.
_WIRE_ALIASES = {
    'viewOffset': 'view_offset',
    'ratingKey': 'rating_key',
    'addedAt': 'added_at'
}
_INT_FIELDS = ('duration', 'view_offset')


def _as_text(value: Any) -> str:
    if value is None:
        return ''
    return str(value)


def _as_int(value: Any) -> int:
    if value is None or value == '':
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class Item:
    """A poster-bearing entity shown on the wall."""

    title: str = ''
    type: str = ''
    thumb: str = ''
    art: str = ''
    year: str = ''
    summary: str = ''
    duration: int = 0
    view_offset: int = 0
    user: str = ''
    show_title: str = ''
    season: str = ''
    episode: str = ''
    show_thumb: str = ''
    rating_key: str = ''
    added_at: str = ''

    @property
    def key(self) -> str:
        if self.rating_key:
            return self.rating_key
        return f"{self.title}_{self.year}"

    @property
    def is_episode(self) -> bool:
        return self.type == 'episode'

    @property
    def poster_ref(self) -> str:
        if self.is_episode and self.show_thumb:
            return self.show_thumb
        return self.thumb

    @property
    def background_ref(self) -> str:
        return self.art or self.thumb

    @property
    def progress(self) -> int:
        if self.duration <= 0:
            return 0
        return max(0, min(100, int(self.view_offset * 100 / self.duration)))

    @property
    def caption(self) -> str:
        if self.is_episode:
            return self.show_title or 'Unknown Show'
        return self.title or 'Unknown'

    @property
    def details(self) -> str:
        user = self.user or 'Unknown User'
        if self.is_episode:
            return f"S{self.season or '?'}E{self.episode or '?'} - {self.title or 'Unknown'} • {user}"
        return f"{self.year} • {user}"

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any]) -> 'Item':
        """Build an item from the endpoint wire shape; unknown keys are ignored."""
        values: Dict[str, Any] = {}
        for wire_key, raw_value in payload.items():
            field_name = _WIRE_ALIASES.get(wire_key, wire_key)
            if field_name not in cls.__dataclass_fields__:
                continue
            if field_name in _INT_FIELDS:
                values[field_name] = _as_int(raw_value)
            else:
                values[field_name] = _as_text(raw_value)
        return cls(**values)

    def to_wire(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'title': self.title,
            'type': self.type,
            'thumb': self.thumb,
            'art': self.art,
            'year': self.year,
            'ratingKey': self.rating_key,
            'addedAt': self.added_at,
            'duration': self.duration
        }
        if self.summary:
            payload['summary'] = self.summary
        if self.user:
            payload['user'] = self.user
            payload['viewOffset'] = self.view_offset
        if self.is_episode:
            payload['show_title'] = self.show_title
            payload['season'] = self.season
            payload['episode'] = self.episode
            payload['show_thumb'] = self.show_thumb
        return payload


def item_from_metadata(entry: Mapping[str, Any], *, with_session: bool = False) -> Item:
    """Normalize one decoded media-server metadata entry into an :class:`Item`.

    Session entries (``with_session``) also carry the summary, playback position
    and the watching user. Episodes are enriched with their show's title,
    season/episode numbers and the show poster used as a fallback.
    """
    item_type = _as_text(entry.get('type'))
    values: Dict[str, Any] = {
        'title': _as_text(entry.get('title')),
        'type': item_type,
        'thumb': _as_text(entry.get('thumb')),
        'art': _as_text(entry.get('art')),
        'year': _as_text(entry.get('year')),
        'duration': _as_int(entry.get('duration')),
        'rating_key': _as_text(entry.get('ratingKey')),
        'added_at': _as_text(entry.get('addedAt'))
    }
    if with_session:
        user = entry.get('User')
        user_title = user.get('title') if isinstance(user, Mapping) else None
        values['summary'] = _as_text(entry.get('summary'))
        values['view_offset'] = _as_int(entry.get('viewOffset'))
        values['user'] = _as_text(user_title) or 'Unknown User'
    if item_type == 'episode':
        values['show_title'] = _as_text(entry.get('grandparentTitle'))
        values['season'] = _as_text(entry.get('parentIndex'))
        values['episode'] = _as_text(entry.get('index'))
        values['show_thumb'] = _as_text(entry.get('grandparentThumb'))
    return Item(**values)


def placeholder_item() -> Item:
    return Item(title=PLACEHOLDER_TITLE, type='placeholder')


def find_index(items, key: str) -> Optional[int]:
    for index, item in enumerate(items):
        if item.key == key:
            return index
    return None

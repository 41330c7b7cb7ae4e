"""Active playback probe."""

from __future__ import annotations

from typing import List, Optional

from .. import config
from ..items import Item, item_from_metadata
from .plex import MalformedResponseError, PlexClient, PlexUnavailableError, is_live_entry

logger = config.logger

# Session types that never get a poster on the wall.
EXCLUDED_SESSION_TYPES = {'track', 'live', 'livetv'}


class StreamProbe:
    """Report what the media server is currently playing.

    ``active_streams`` never raises: transport failures and undecodable bodies
    are logged and reported as "nothing playing".
    """

    def __init__(self, client: Optional[PlexClient] = None):
        self.client = client or PlexClient()

    async def active_streams(self) -> List[Item]:
        try:
            container = await self.client.sessions()
        except PlexUnavailableError as exc:
            logger.warning('[Probe] Session status unavailable: %s', exc)
            return []
        except MalformedResponseError as exc:
            logger.warning('[Probe] Session status unreadable: %s', exc)
            return []

        streams: List[Item] = []
        for entry in container.metadata:
            if is_live_entry(entry):
                continue
            if str(entry.get('type', '')).strip().lower() in EXCLUDED_SESSION_TYPES:
                continue
            streams.append(item_from_metadata(entry, with_session=True))
        logger.debug('[Probe] %d active stream(s) via %s', len(streams), container.format.value)
        return streams

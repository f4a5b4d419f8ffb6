import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings
from club.cache import RedisCache
from club.errors import ValidationError
from db.dal import track_dal


@dataclass(frozen=True)
class ResolvedTrack:
    id: int
    value: str


class TrackResolver:
    """Validates a subscriber-chosen category against the active catalog tracks."""

    def __init__(self, settings: Settings, cache: Optional[RedisCache] = None):
        self.settings = settings
        self.cache = cache

    def normalize(self, value: Optional[str]) -> str:
        """Lower-case, trim and map known aliases onto the canonical value."""
        if value is None:
            return ""
        normalized = " ".join(str(value).split()).lower()
        return self.settings.TRACK_ALIASES.get(normalized, normalized)

    async def resolve(self, session: AsyncSession, value: Optional[str]) -> ResolvedTrack:
        canonical = self.normalize(value)
        if not canonical:
            raise ValidationError("Track is required.")

        tracks = await self._active_tracks(session)
        track_id = tracks.get(canonical)
        if track_id is None:
            logging.warning(f"Track resolution failed for '{value}' (normalized '{canonical}')")
            raise ValidationError(f"Invalid track '{value}'.")
        return ResolvedTrack(id=track_id, value=canonical)

    async def lookup(self, session: AsyncSession, value: Optional[str]) -> Optional[ResolvedTrack]:
        """Like resolve(), but an unknown value yields None."""
        canonical = self.normalize(value)
        if not canonical:
            return None
        track_id = (await self._active_tracks(session)).get(canonical)
        if track_id is None:
            return None
        return ResolvedTrack(id=track_id, value=canonical)

    async def _active_tracks(self, session: AsyncSession) -> Dict[str, int]:
        if self.cache is not None:
            cached: Optional[List[Dict]] = await self.cache.get_active_tracks()
            if cached is not None:
                return {item["value"]: item["id"] for item in cached}

        tracks = await track_dal.get_active_tracks(session)
        payload = [{"id": track.id, "value": track.value} for track in tracks]
        if self.cache is not None:
            await self.cache.set_active_tracks(payload, ttl=self.settings.TRACKS_CACHE_TTL)
        return {item["value"]: item["id"] for item in payload}

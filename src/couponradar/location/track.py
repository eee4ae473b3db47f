"""
Recorded location tracks.

A track is a JSON array of `{"at": ISO-8601, "latitude": .., "longitude": ..}`
points, replayed in order by `couponradar simulate`.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, TypeAdapter

from couponradar.core.env import resolve_project_path
from couponradar.core.time import ensure_tz
from couponradar.domain.models import Coordinate


class TrackPoint(BaseModel):
    at: datetime
    latitude: float
    longitude: float

    def coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


_TRACK_ADAPTER = TypeAdapter(list[TrackPoint])


def load_track(path: str | Path, *, timezone: str) -> list[TrackPoint]:
    """Load a track file; naive timestamps are taken as local to `timezone`."""
    payload = json.loads(resolve_project_path(path).read_text(encoding="utf-8"))
    points = _TRACK_ADAPTER.validate_python(payload)
    return [p.model_copy(update={"at": ensure_tz(p.at, timezone)}) for p in points]

from __future__ import annotations

from labres.db.models.types.utcdatetime import UTCDateTime

__all__ = (
    'UTCDateTime',
)

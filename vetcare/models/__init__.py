"""Database models."""

from sqlalchemy import MetaData

from vetcare.models.appointments import appointments
from vetcare.models.appointments import metadata as appointments_metadata
from vetcare.models.notifications import metadata as notifications_metadata
from vetcare.models.notifications import notifications

# Combined metadata for create_all and migrations
metadata = MetaData()
for _source in (appointments_metadata, notifications_metadata):
    for _table in _source.tables.values():
        _table.to_metadata(metadata)

__all__ = [
    "appointments",
    "metadata",
    "notifications",
]

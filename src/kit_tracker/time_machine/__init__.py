"""Kit time machine: versioned writes and historical state reconstruction.

Every committed kit update is stamped with the next version and recorded as
an immutable change log, enabling reconstruction of any kit (or the whole
kit set) as it existed at a past timestamp.
"""

from __future__ import annotations

from kit_tracker.time_machine.change_query import ChangeQueryService
from kit_tracker.time_machine.reconstructor import KitStateReconstructor
from kit_tracker.time_machine.writer import VersionedKitWriter

__all__ = [
    "ChangeQueryService",
    "KitStateReconstructor",
    "VersionedKitWriter",
]

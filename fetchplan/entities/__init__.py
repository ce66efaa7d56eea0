"""Entity layer: records, record lists and the HTTP transport they fetch with.

Submodules:
    events     -- ListenerRegistry keyed by consumer token.
    base       -- Entity base class (url building, fetch, listeners).
    record     -- Record: a single attribute mapping.
    collection -- RecordList: an ordered list of records.
    transport  -- Transport protocol and the httpx-backed HttpTransport.
"""

from fetchplan.entities.base import Entity
from fetchplan.entities.collection import RecordList
from fetchplan.entities.events import ListenerRegistry
from fetchplan.entities.record import Record
from fetchplan.entities.transport import HttpTransport, Transport

__all__ = ["Entity", "HttpTransport", "ListenerRegistry", "Record", "RecordList", "Transport"]

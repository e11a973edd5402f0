"""Client-side save queue for the character dashboard.

Field edits are debounced per field, sent through a single-flight FIFO
worker, retried on failure, buffered during character/section switches and
flushed before the page goes away. See queue.py for the full lifecycle.
"""

from .backup_timer import SessionBackupTimer  # noqa: F401
from .queue import SaveQueue, SaveTransport  # noqa: F401
from .states import FieldEvent, FieldState, InvalidTransition, transition  # noqa: F401
from .transport import DashboardClient, FieldKey, TransportError  # noqa: F401

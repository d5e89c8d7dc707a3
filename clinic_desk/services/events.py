import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List


logger = logging.getLogger("clinic_desk.events")

PATIENT_ADDED = "patient_added"
APPOINTMENT_ADDED = "appointment_added"
DISPATCH_REQUESTED = "dispatch_requested"
PROFILE_UPDATED = "profile_updated"
UI_UPDATED = "ui_updated"
FLAGS_UPDATED = "flags_updated"
THEME_CHANGED = "theme_changed"
TEMPLATES_UPDATED = "templates_updated"
DATA_IMPORTED = "data_imported"
STORE_CLEARED = "store_cleared"

Handler = Callable[[str, Dict[str, Any]], None]


class EventBus:
    """Subscription list; handlers receive (event_name, payload)."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        try:
            self._handlers[event].remove(handler)
        except ValueError:
            pass

    def emit(self, event: str, **payload: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(event, payload)
            except Exception as e:
                # listener errors never reach the store operation that emitted
                logger.exception(f"[emit] Handler {handler!r} failed for event={event}: {e}")

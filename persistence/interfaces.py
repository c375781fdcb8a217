from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class ChangeNotifier(Protocol):
    """
    Sink for "document changed" events (e.g. a realtime push channel).

    Called after a commit is durable. Delivery is best-effort: the store logs and
    ignores anything this raises.
    """

    def notify(self, document_id: str, event: str) -> None:
        ...


class LoggingChangeNotifier(ChangeNotifier):
    def notify(self, document_id: str, event: str) -> None:
        logger.info("Document changed: %s (%s)", document_id, event)

"""
Per-app service container.
create_app() builds one and stores it on the Flask app; routes reach it
through get_services() instead of module globals.
"""

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable

from flask import current_app

EXTENSION_KEY = "merge_rewards"


@dataclass
class Services:
    ledger: Any
    installations: Any
    github: Any
    orchestrator: Any
    webhook_secret: str
    frontend_url: str
    background: Callable
    event_counts: Counter = field(default_factory=Counter)
    _counts_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_event(self, label):
        with self._counts_lock:
            self.event_counts[label] += 1

    def event_snapshot(self):
        with self._counts_lock:
            return dict(self.event_counts)


def get_services():
    return current_app.extensions[EXTENSION_KEY]

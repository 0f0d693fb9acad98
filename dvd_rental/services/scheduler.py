from __future__ import annotations

import logging
import threading
from typing import Any

from sqlalchemy.orm import Session, sessionmaker


LOGGER = logging.getLogger("dvd_rental.scheduler")


class SessionTicker:
    """Daemon thread that runs one job against a fresh session on a fixed cadence.

    Subclasses implement ``tick``; whatever it returns is kept in
    ``last_summary``. A failing tick is logged and the next tick retries.
    """

    name = "ticker"

    def __init__(self, session_factory: sessionmaker, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._session_factory = session_factory
        self._interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.last_summary: Any = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self, db: Session) -> Any:
        raise NotImplementedError

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        LOGGER.info("Ticker started name=%s interval_seconds=%s", self.name, self._interval_seconds)

    def stop(self, timeout: float | None = 10.0) -> None:
        with self._lock:
            thread = self._thread
            self._stop.set()
        if thread is not None:
            thread.join(timeout)
        LOGGER.info("Ticker stopped name=%s", self.name)

    def run_once(self) -> Any:
        db = self._session_factory()
        try:
            summary = self.tick(db)
        finally:
            db.close()
        self.last_summary = summary
        return summary

    def _run(self) -> None:
        while not self._stop.wait(self._interval_seconds):
            try:
                self.run_once()
            except Exception:
                LOGGER.exception("Ticker run crashed name=%s", self.name)

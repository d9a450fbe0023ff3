from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from sheetcal.models import SyncResult


logger = logging.getLogger(__name__)

TOKEN_KEY = "debounce_token"

ARMED = "armed"
PROCEED = "proceed"
SUPERSEDED = "superseded"


class TokenStore(Protocol):
    def get_meta(self, key: str) -> str | None: ...

    def set_meta(self, key: str, value: str) -> None: ...


def _new_token() -> str:
    return str(time.time_ns())


@dataclass
class DebounceTicket:
    token: str
    state: str = ARMED


class DebounceCoalescer:
    """Collapse a burst of change notifications into one sync run.

    Every notification overwrites a shared token and waits out the window.
    Only the notification whose token is still in the slot afterwards runs
    the sync; all earlier ones see a newer token and drop out.
    """

    def __init__(
        self,
        token_store: TokenStore,
        run: Callable[[str], SyncResult],
        window_seconds: float = 2.0,
        *,
        sleep: Callable[[float], None] = time.sleep,
        token_factory: Callable[[], str] = _new_token,
    ) -> None:
        self.token_store = token_store
        self.run = run
        self.window_seconds = window_seconds
        self._sleep = sleep
        self._token_factory = token_factory

    def arm(self) -> DebounceTicket:
        token = self._token_factory()
        self.token_store.set_meta(TOKEN_KEY, token)
        return DebounceTicket(token=token)

    def settle(self, ticket: DebounceTicket) -> str:
        latest = self.token_store.get_meta(TOKEN_KEY)
        ticket.state = PROCEED if latest == ticket.token else SUPERSEDED
        return ticket.state

    def on_change(self, trigger: str = "edit") -> SyncResult | None:
        ticket = self.arm()
        self._sleep(self.window_seconds)
        if self.settle(ticket) == SUPERSEDED:
            logger.info("Change %s superseded by a newer edit, skipping sync", ticket.token)
            return None
        logger.info("Change %s is the latest edit, starting sync", ticket.token)
        return self.run(trigger)

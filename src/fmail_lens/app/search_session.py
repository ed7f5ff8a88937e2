"""Search requests where the last issued query wins.

Typing changes the query faster than the source can answer. Each change
bumps the generation of the search FetchSlot; a result that lands for an
older generation is discarded even if it completes after the newer one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from fmail_lens.app.fetch import (
    FetchPurpose,
    FetchResult,
    FetchSlot,
    FetchTicket,
    InlineScheduler,
    Scheduler,
    submit,
)
from fmail_lens.source import MessageSource, SearchQuery, SearchResult, guarded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchState:
    query: SearchQuery | None
    results: tuple[SearchResult, ...] = ()
    generation: int = 0
    error: str = ""
    pending: bool = False


class SearchSession:
    def __init__(
        self,
        source: MessageSource,
        *,
        scheduler: Scheduler | None = None,
        on_change: Callable[[SearchState], None] | None = None,
    ):
        self.source = source
        self.scheduler: Scheduler = scheduler or InlineScheduler()
        self.on_change = on_change
        self._slot = FetchSlot(FetchPurpose.SEARCH)
        self.state = SearchState(query=None)

    @property
    def generation(self) -> int:
        return self._slot.generation

    @property
    def stale_drops(self) -> int:
        return self._slot.stale_drops

    def search(self, query: SearchQuery) -> FetchTicket | None:
        ticket = self._slot.issue(query)
        self._publish(
            SearchState(
                query=query,
                results=self.state.results,
                generation=self._slot.generation,
                pending=True,
            )
        )
        if ticket is not None:
            self._start(ticket)
        return ticket

    def clear(self) -> None:
        self._slot.invalidate()
        self._publish(SearchState(query=None, generation=self._slot.generation))

    def _start(self, ticket: FetchTicket) -> None:
        query = ticket.request
        submit(
            self.scheduler,
            ticket,
            lambda: guarded("search", lambda: self.source.search(query)),
            self._deliver,
        )

    def _deliver(self, result: FetchResult) -> None:
        apply, next_ticket = self._slot.complete(result)
        if next_ticket is not None:
            self._start(next_ticket)
        if not apply:
            return
        if not result.ok:
            logger.warning("search failed: %s", result.error)
            self._publish(
                SearchState(
                    query=result.ticket.request,
                    results=self.state.results,
                    generation=result.ticket.generation,
                    error=str(result.error),
                )
            )
            return
        self._publish(
            SearchState(
                query=result.ticket.request,
                results=tuple(result.value),
                generation=result.ticket.generation,
            )
        )

    def _publish(self, state: SearchState) -> None:
        self.state = state
        if self.on_change is not None:
            self.on_change(state)

"""Prev/next navigation on pinned sales boards.

Every board message has a ``NavState``. Its ``epoch`` is a logical clock
embedded in the rendered button ids: a click is only honoured if it carries
the message's current epoch, and every commit bumps the epoch, so buttons
from an outdated render stop working the moment a newer render is
committed.

Handling a click has two halves:

* ``evaluate`` is a pure transition check (malformed, stale, cooling down,
  duplicate) that decides whether the click is accepted. Rejections only
  touch state to seed an unknown epoch or expire old cooldowns.
* Accepted clicks are acknowledged immediately and then run under the
  message's ``asyncio.Lock`` (a concurrency-1 queue): disable buttons, bump
  the epoch, fetch the page, and commit only if the epoch is still the one
  this click set. A slow fetch that lost the race is discarded.

Idle states are swept after a TTL. Losing a state is safe because the next
click's embedded epoch re-seeds it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from sales_board import metrics
from sales_board.config import settings
from sales_board.ingest.search_fetcher import SearchFetcher, search_fetcher
from sales_board.logging_config import get_logger
from sales_board.notify.channel import InteractionExpiredError, NavInteraction
from sales_board.notify.render import (
    MalformedButtonError,
    NavRequest,
    decode_nav_id,
    is_nav_id,
    render_error,
    render_page,
)
from sales_board.worker.prewarm import Prewarmer, prewarmer

logger = logging.getLogger(__name__)


class RenderCommitError(RuntimeError):
    """Raised when the board edit fails after the page was fetched."""
    pass


class NavOutcome(str, Enum):
    """Result of one button interaction."""

    IGNORED = "ignored"
    ACCEPTED = "accepted"
    MALFORMED = "malformed"
    MISSING_CONTEXT = "missing_context"
    UNKNOWN_EPOCH = "unknown_epoch"
    STALE = "stale"
    AHEAD = "ahead"
    COOLDOWN = "cooldown"
    USER_COOLDOWN = "user_cooldown"
    DUPLICATE = "duplicate"
    COMMITTED = "committed"
    SUPERSEDED = "superseded"
    EXPIRED = "expired"
    FAILED = "failed"


REPLIES = {
    NavOutcome.MISSING_CONTEXT: "Missing message context.",
    NavOutcome.UNKNOWN_EPOCH: "This board needs to be re-initialised. Ask a moderator to run /sales init.",
    NavOutcome.STALE: "Those buttons are a little out of date. Please use the refreshed buttons on the message.",
    NavOutcome.AHEAD: "Please wait a moment for the current page update to finish.",
    NavOutcome.COOLDOWN: "Please wait a moment before changing pages again.",
    NavOutcome.USER_COOLDOWN: "You are clicking a little quickly, please wait just a moment.",
    NavOutcome.DUPLICATE: "Still updating that page. Hang tight!",
}

COMMIT_FAILED_REPLY = "Couldn't update the sales board. Please try again."


@dataclass
class NavState:
    """Navigation bookkeeping for one pinned message."""

    epoch: int = 0
    cooldown_until: float = 0.0
    user_cooldowns: dict[int, float] = field(default_factory=dict)
    pending: set[tuple[int, int]] = field(default_factory=set)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_seen: float = 0.0

    def refresh_cooldowns(self, now: float) -> None:
        """Drop cooldown windows that have ended."""
        if self.cooldown_until and self.cooldown_until <= now:
            self.cooldown_until = 0.0
        for user_id, until in list(self.user_cooldowns.items()):
            if until <= now:
                del self.user_cooldowns[user_id]

    def reset_cooldowns(self, user_id: Optional[int] = None) -> None:
        self.cooldown_until = 0.0
        if user_id is not None:
            self.user_cooldowns.pop(user_id, None)

    def start_cooldowns(self, until: float, user_id: Optional[int] = None) -> None:
        self.cooldown_until = until
        if user_id is not None:
            self.user_cooldowns[user_id] = until

    @property
    def busy(self) -> bool:
        return self.lock.locked() or bool(self.pending)


@dataclass(frozen=True)
class NavDecision:
    """Outcome of ``evaluate``; ``message`` is the ephemeral reply on rejection."""

    outcome: NavOutcome
    message: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.outcome is NavOutcome.ACCEPTED


def evaluate(
    state: NavState,
    request: NavRequest,
    user_id: Optional[int],
    now: float,
    cooldown_seconds: float,
    trust_unknown_epoch: bool = True,
) -> NavDecision:
    """
    Decide whether a decoded click may proceed.

    Order: unknown epoch (seed or refuse), epoch mismatch, global cooldown,
    per-user cooldown, duplicate (page, epoch) already pending.

    Args:
        state: The message's NavState
        request: Decoded click
        user_id: Acting user, if known
        now: Monotonic time
        cooldown_seconds: Cooldown length; 0 disables cooldowns
        trust_unknown_epoch: Seed an unknown epoch from the click

    Returns:
        NavDecision
    """
    state.refresh_cooldowns(now)

    if state.epoch == 0:
        if not trust_unknown_epoch:
            return NavDecision(NavOutcome.UNKNOWN_EPOCH, REPLIES[NavOutcome.UNKNOWN_EPOCH])
        state.epoch = request.epoch

    if request.epoch != state.epoch:
        outcome = NavOutcome.STALE if request.epoch < state.epoch else NavOutcome.AHEAD
        return NavDecision(outcome, REPLIES[outcome])

    if cooldown_seconds > 0:
        if state.cooldown_until > now:
            return NavDecision(NavOutcome.COOLDOWN, REPLIES[NavOutcome.COOLDOWN])
        if user_id is not None and state.user_cooldowns.get(user_id, 0.0) > now:
            return NavDecision(NavOutcome.USER_COOLDOWN, REPLIES[NavOutcome.USER_COOLDOWN])

    if (request.page_index, request.epoch) in state.pending:
        return NavDecision(NavOutcome.DUPLICATE, REPLIES[NavOutcome.DUPLICATE])

    return NavDecision(NavOutcome.ACCEPTED)


class NavStateRegistry:
    """Process-wide map of message id to NavState with idle expiry."""

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = settings.sales_nav_state_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._states: dict[int, NavState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, message_id: int) -> bool:
        return message_id in self._states

    def get(self, message_id: int) -> NavState:
        """Get or lazily create the state, marking it as recently used."""
        state = self._states.get(message_id)
        if state is None:
            state = NavState()
            self._states[message_id] = state
        state.last_seen = self._clock()
        return state

    def current_epoch(self, message_id: int) -> int:
        state = self._states.get(message_id)
        return state.epoch if state else 0

    def set_epoch(self, message_id: int, epoch: int) -> None:
        """Record the epoch a board was just rendered with."""
        self.get(message_id).epoch = epoch

    def forget(self, message_id: int) -> None:
        self._states.pop(message_id, None)

    def sweep(self) -> int:
        """
        Remove states idle for longer than the TTL.

        Returns:
            Number of states removed
        """
        cutoff = self._clock() - self.ttl_seconds
        stale = [
            message_id
            for message_id, state in self._states.items()
            if state.last_seen < cutoff and not state.busy
        ]
        for message_id in stale:
            del self._states[message_id]
        if stale:
            logger.debug(f"Swept {len(stale)} idle navigation states")
        return len(stale)


class NavigationController:
    """Serves prev/next clicks on pinned boards."""

    def __init__(
        self,
        fetcher: Optional[SearchFetcher] = None,
        warmer: Optional[Prewarmer] = None,
        registry: Optional[NavStateRegistry] = None,
        cooldown_seconds: Optional[float] = None,
        trust_unknown_epoch: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetcher = fetcher or search_fetcher
        self.warmer = warmer or prewarmer
        self.registry = nav_states if registry is None else registry
        self.cooldown_seconds = (
            settings.sales_nav_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        )
        self.trust_unknown_epoch = (
            settings.sales_trust_unknown_epoch if trust_unknown_epoch is None else trust_unknown_epoch
        )
        self._clock = clock

    async def _reject(self, interaction: NavInteraction, outcome: NavOutcome, message: str) -> NavOutcome:
        metrics.nav_interactions_total.labels(outcome=outcome.value).inc()
        await interaction.reply_ephemeral(message)
        return outcome

    async def handle(self, interaction: NavInteraction) -> NavOutcome:
        """
        Handle one button interaction.

        Args:
            interaction: Platform interaction wrapper

        Returns:
            NavOutcome describing what happened
        """
        if not is_nav_id(interaction.custom_id):
            return NavOutcome.IGNORED

        try:
            request = decode_nav_id(interaction.custom_id)
        except MalformedButtonError as e:
            logger.debug(f"Malformed nav button {interaction.custom_id!r}")
            return await self._reject(interaction, NavOutcome.MALFORMED, str(e))

        message_id = interaction.message_id
        if message_id is None:
            return await self._reject(
                interaction, NavOutcome.MISSING_CONTEXT, REPLIES[NavOutcome.MISSING_CONTEXT]
            )

        user_id = interaction.user_id
        state = self.registry.get(message_id)
        decision = evaluate(
            state,
            request,
            user_id,
            self._clock(),
            self.cooldown_seconds,
            self.trust_unknown_epoch,
        )
        if not decision.accepted:
            logger.debug(
                f"Nav click rejected ({decision.outcome.value}) msg={message_id} "
                f"region={request.region} page={request.page_index} "
                f"epoch={request.epoch} current={state.epoch}"
            )
            return await self._reject(interaction, decision.outcome, decision.message)

        # Registered before the first await so a concurrent duplicate sees it
        key = (request.page_index, request.epoch)
        state.pending.add(key)
        try:
            if not await interaction.defer_update():
                outcome = NavOutcome.EXPIRED
            else:
                outcome = await self._run_queued(state, interaction, request, message_id, user_id)
        finally:
            state.pending.discard(key)

        metrics.nav_interactions_total.labels(outcome=outcome.value).inc()
        return outcome

    async def _run_queued(
        self,
        state: NavState,
        interaction: NavInteraction,
        request: NavRequest,
        message_id: int,
        user_id: Optional[int],
    ) -> NavOutcome:
        # Everything that reads or moves the epoch happens under the message lock
        async with state.lock:
            if self.cooldown_seconds > 0 and state.cooldown_until > self._clock():
                return NavOutcome.COOLDOWN

            my_epoch = state.epoch + 1
            state.epoch = my_epoch
            try:
                return await self._update_board(state, interaction, request, my_epoch, user_id)

            except InteractionExpiredError as e:
                logger.debug(f"Nav interaction expired mid-update msg={message_id}: {e}")
                state.reset_cooldowns(user_id)
                self._restore_epoch(state, my_epoch)
                return NavOutcome.EXPIRED

            except Exception as e:
                get_logger(__name__, region=request.region, page=request.page_index, epoch=my_epoch).error(
                    f"Sales nav update failed msg={message_id} region={request.region} "
                    f"page={request.page_index} epoch={my_epoch}: {e}",
                    exc_info=True,
                )
                state.reset_cooldowns(user_id)
                self._restore_epoch(state, my_epoch)
                detail = COMMIT_FAILED_REPLY if isinstance(e, RenderCommitError) else str(e)
                await self._surface_failure(interaction, detail)
                return NavOutcome.FAILED

    @staticmethod
    def _restore_epoch(state: NavState, my_epoch: int) -> None:
        # Undo this click's bump unless something newer already moved past it
        if state.epoch == my_epoch:
            state.epoch = my_epoch - 1

    async def _surface_failure(self, interaction: NavInteraction, detail: str) -> None:
        try:
            await interaction.follow_up_ephemeral(f"Error: {detail}")
            # Re-enable the previous render; without one, show the error in place
            await interaction.edit_original(interaction.current_payload or render_error(detail))
        except Exception as e:
            logger.debug(f"Could not report nav failure to user: {e}")

    async def _update_board(
        self,
        state: NavState,
        interaction: NavInteraction,
        request: NavRequest,
        my_epoch: int,
        user_id: Optional[int],
    ) -> NavOutcome:
        if interaction.current_payload is not None:
            if not await interaction.edit_original(interaction.current_payload.with_buttons_disabled()):
                raise InteractionExpiredError("interaction no longer accepts edits")

        record = await self.fetcher.get_page(request.region, request.page_index)
        if state.epoch != my_epoch:
            logger.debug(
                f"Discarding superseded page {request.region}:{request.page_index} "
                f"epoch={my_epoch} current={state.epoch}"
            )
            return NavOutcome.SUPERSEDED

        payload = render_page(
            request.region,
            request.page_index,
            record.items,
            record.total_pages,
            my_epoch,
        )
        try:
            edited = await interaction.edit_original(payload)
        except InteractionExpiredError:
            raise
        except Exception as e:
            raise RenderCommitError(str(e)) from e
        if not edited:
            raise InteractionExpiredError("interaction no longer accepts edits")

        self.warmer.prewarm_around(request.region, request.page_index, record.total_pages)
        if self.cooldown_seconds > 0:
            state.start_cooldowns(self._clock() + self.cooldown_seconds, user_id)
        logger.debug(
            f"Committed {request.region}:{request.page_index}/{record.total_pages} epoch={my_epoch}"
        )
        return NavOutcome.COMMITTED


# Global navigation state registry and controller
nav_states = NavStateRegistry()
navigation = NavigationController(registry=nav_states)

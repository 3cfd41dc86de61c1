"""Tests for board navigation."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeChannel, FakeFetcher, FakeInteraction, FakeResolver
from sales_board.db.models import PinnedBoard
from sales_board.notify.channel import InteractionExpiredError
from sales_board.notify.navigation import (
    REPLIES,
    NavigationController,
    NavOutcome,
    NavState,
    NavStateRegistry,
    evaluate,
)
from sales_board.notify.render import DisplayPayload, NavRequest, decode_nav_id, render_page
from sales_board.worker.tasks import BoardService

MESSAGE_ID = 555


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


async def wait_until(predicate, rounds: int = 100):
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class GatedChannel(FakeChannel):
    """FakeChannel whose message lookup waits for a gate."""

    def __init__(self, channel_id: int):
        super().__init__(channel_id)
        self.gate = asyncio.Event()
        self.fetching = False

    async def fetch_message(self, message_id: int):
        self.fetching = True
        await self.gate.wait()
        return await super().fetch_message(message_id)


class TestEvaluate:
    """Test the pure transition check."""

    def setup_method(self):
        self.state = NavState(epoch=3)

    def test_accepts_current_epoch(self):
        decision = evaluate(self.state, NavRequest("US", 1, 3), 7, 10.0, 1.5)
        assert decision.accepted
        assert decision.message is None

    def test_older_epoch_is_stale(self):
        decision = evaluate(self.state, NavRequest("US", 1, 2), 7, 10.0, 1.5)
        assert decision.outcome is NavOutcome.STALE
        assert decision.message == REPLIES[NavOutcome.STALE]

    def test_newer_epoch_asks_to_wait(self):
        decision = evaluate(self.state, NavRequest("US", 1, 4), 7, 10.0, 1.5)
        assert decision.outcome is NavOutcome.AHEAD

    def test_global_cooldown(self):
        self.state.cooldown_until = 11.0
        decision = evaluate(self.state, NavRequest("US", 1, 3), 7, 10.0, 1.5)
        assert decision.outcome is NavOutcome.COOLDOWN

    def test_user_cooldown(self):
        self.state.user_cooldowns[7] = 11.0
        decision = evaluate(self.state, NavRequest("US", 1, 3), 7, 10.0, 1.5)
        assert decision.outcome is NavOutcome.USER_COOLDOWN

        other_user = evaluate(self.state, NavRequest("US", 1, 3), 8, 10.0, 1.5)
        assert other_user.accepted

    def test_expired_cooldowns_are_cleared(self):
        self.state.cooldown_until = 9.0
        self.state.user_cooldowns[7] = 9.0

        assert evaluate(self.state, NavRequest("US", 1, 3), 7, 10.0, 1.5).accepted
        assert self.state.cooldown_until == 0.0
        assert self.state.user_cooldowns == {}

    def test_zero_cooldown_disables_checks(self):
        self.state.cooldown_until = 11.0
        assert evaluate(self.state, NavRequest("US", 1, 3), 7, 10.0, 0).accepted

    def test_duplicate_pending(self):
        self.state.pending.add((1, 3))
        decision = evaluate(self.state, NavRequest("US", 1, 3), 7, 10.0, 1.5)
        assert decision.outcome is NavOutcome.DUPLICATE

        other_page = evaluate(self.state, NavRequest("US", 2, 3), 7, 10.0, 1.5)
        assert other_page.accepted

    def test_unknown_epoch_is_trusted(self):
        state = NavState()
        assert evaluate(state, NavRequest("US", 1, 9), 7, 10.0, 1.5).accepted
        assert state.epoch == 9

    def test_unknown_epoch_refused_when_not_trusted(self):
        state = NavState()
        decision = evaluate(state, NavRequest("US", 1, 9), 7, 10.0, 1.5, trust_unknown_epoch=False)
        assert decision.outcome is NavOutcome.UNKNOWN_EPOCH
        assert state.epoch == 0


class TestNavigationController:
    """Test click handling end to end with fakes."""

    def setup_method(self):
        self.clock = FakeClock()
        self.fetcher = FakeFetcher(total_pages=10)
        self.warmer = MagicMock()
        self.registry = NavStateRegistry(ttl_seconds=600, clock=self.clock)
        self.controller = self._controller()

    def _controller(self, **kwargs):
        defaults = dict(cooldown_seconds=0, trust_unknown_epoch=True, clock=self.clock)
        defaults.update(kwargs)
        return NavigationController(
            fetcher=self.fetcher,
            warmer=self.warmer,
            registry=self.registry,
            **defaults,
        )

    def _board(self, page_index: int, epoch: int) -> DisplayPayload:
        return render_page("US", page_index, [], 10, epoch)

    @pytest.mark.asyncio
    async def test_commit_renders_new_page_with_bumped_epoch(self):
        self.registry.set_epoch(MESSAGE_ID, 1)
        interaction = FakeInteraction("sales_nav:US:1:1", current_payload=self._board(0, 1))

        outcome = await self.controller.handle(interaction)

        assert outcome is NavOutcome.COMMITTED
        assert interaction.deferred
        disabled, committed = interaction.edits
        assert all(b.disabled for b in disabled.buttons)
        assert committed.embed["title"] == "Steam Game Sales - page 2/10"
        assert [b.custom_id for b in committed.buttons] == ["sales_nav:US:0:2", "sales_nav:US:2:2"]
        assert self.registry.current_epoch(MESSAGE_ID) == 2
        self.warmer.prewarm_around.assert_called_once_with("US", 1, 10)
        assert interaction.ephemeral == []

    @pytest.mark.asyncio
    async def test_only_current_epoch_commits(self):
        self.registry.set_epoch(MESSAGE_ID, 2)

        first = FakeInteraction("sales_nav:US:4:1")
        second = FakeInteraction("sales_nav:US:3:2")
        third = FakeInteraction("sales_nav:US:4:1")

        assert await self.controller.handle(first) is NavOutcome.STALE
        assert await self.controller.handle(second) is NavOutcome.COMMITTED
        assert await self.controller.handle(third) is NavOutcome.STALE

        assert self.fetcher.calls == [("US", 3)]
        assert first.edits == [] and third.edits == []
        assert third.ephemeral == [REPLIES[NavOutcome.STALE]]
        assert second.edits[-1].embed["title"] == "Steam Game Sales - page 4/10"

    @pytest.mark.asyncio
    async def test_newer_epoch_is_told_to_wait(self):
        self.registry.set_epoch(MESSAGE_ID, 2)
        interaction = FakeInteraction("sales_nav:US:1:5")

        assert await self.controller.handle(interaction) is NavOutcome.AHEAD
        assert interaction.ephemeral == [REPLIES[NavOutcome.AHEAD]]
        assert not interaction.deferred

    @pytest.mark.asyncio
    async def test_duplicate_click_fetches_once(self):
        self.registry.set_epoch(MESSAGE_ID, 1)
        first = FakeInteraction("sales_nav:US:1:1", user_id=1)
        second = FakeInteraction("sales_nav:US:1:1", user_id=2)

        outcomes = await asyncio.gather(self.controller.handle(first), self.controller.handle(second))

        assert outcomes == [NavOutcome.COMMITTED, NavOutcome.DUPLICATE]
        assert self.fetcher.calls == [("US", 1)]
        assert second.ephemeral == ["Still updating that page. Hang tight!"]
        assert second.edits == []

    @pytest.mark.asyncio
    async def test_cooldown_blocks_rapid_clicks(self):
        controller = self._controller(cooldown_seconds=1.5)
        self.registry.set_epoch(MESSAGE_ID, 1)

        assert await controller.handle(FakeInteraction("sales_nav:US:1:1")) is NavOutcome.COMMITTED

        rapid = FakeInteraction("sales_nav:US:2:2", user_id=9)
        assert await controller.handle(rapid) is NavOutcome.COOLDOWN
        assert rapid.ephemeral == ["Please wait a moment before changing pages again."]

        self.clock.now += 2
        assert await controller.handle(FakeInteraction("sales_nav:US:2:2")) is NavOutcome.COMMITTED

    @pytest.mark.asyncio
    async def test_failure_reports_and_keeps_epoch(self):
        controller = self._controller(cooldown_seconds=1.5)
        self.registry.set_epoch(MESSAGE_ID, 1)
        self.fetcher.error = RuntimeError("store down")
        board = self._board(0, 1)
        interaction = FakeInteraction("sales_nav:US:1:1", current_payload=board)

        outcome = await controller.handle(interaction)

        assert outcome is NavOutcome.FAILED
        assert interaction.follow_ups == ["Error: store down"]
        assert interaction.edits[-1] == board
        state = self.registry.get(MESSAGE_ID)
        assert state.epoch == 1
        assert state.cooldown_until == 0.0
        assert state.pending == set()

        # The re-enabled buttons work straight away
        self.fetcher.error = None
        retry = FakeInteraction("sales_nav:US:1:1", current_payload=board)
        assert await controller.handle(retry) is NavOutcome.COMMITTED

    @pytest.mark.asyncio
    async def test_commit_edit_failure_is_generic(self):
        self.registry.set_epoch(MESSAGE_ID, 1)
        interaction = FakeInteraction("sales_nav:US:1:1")
        edits = []

        async def flaky_edit(payload):
            edits.append(payload)
            if len(edits) == 2:
                raise ConnectionError("socket closed")
            return True

        interaction.edit_original = flaky_edit

        assert await self.controller.handle(interaction) is NavOutcome.FAILED
        assert interaction.follow_ups == ["Error: Couldn't update the sales board. Please try again."]
        assert self.registry.current_epoch(MESSAGE_ID) == 1
        self.warmer.prewarm_around.assert_not_called()

    @pytest.mark.asyncio
    async def test_superseded_fetch_is_discarded(self):
        self.registry.set_epoch(MESSAGE_ID, 1)
        self.fetcher.gate = asyncio.Event()
        interaction = FakeInteraction("sales_nav:US:1:1")

        task = asyncio.create_task(self.controller.handle(interaction))
        await wait_until(lambda: self.fetcher.calls)

        # The epoch moved on while the page was loading
        self.registry.set_epoch(MESSAGE_ID, 7)
        self.fetcher.gate.set()

        assert await task is NavOutcome.SUPERSEDED
        assert len(interaction.edits) == 1
        assert self.registry.current_epoch(MESSAGE_ID) == 7
        self.warmer.prewarm_around.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_waits_for_click_and_keeps_buttons_usable(self):
        channel = GatedChannel(42)
        message = await channel.send(self._board(0, 1))
        self.registry.set_epoch(message.id, 1)
        store = MagicMock()
        store.touch = AsyncMock(return_value=True)
        service = BoardService(
            store=store, fetcher=self.fetcher, warmer=self.warmer, registry=self.registry, region="US"
        )
        board = PinnedBoard(guild_id=1, channel_id=42, message_id=message.id)
        await self.fetcher.get_page("US", 0)
        self.fetcher.gate = asyncio.Event()

        refresh = asyncio.create_task(service.refresh_board(board, FakeResolver(channel)))
        await wait_until(lambda: channel.fetching)

        click = FakeInteraction("sales_nav:US:1:1", message_id=message.id)
        edits = []

        async def expiring_edit(payload):
            edits.append(payload)
            if len(edits) == 2:
                raise InteractionExpiredError("Unknown interaction")
            return True

        click.edit_original = expiring_edit
        click_task = asyncio.create_task(self.controller.handle(click))
        for _ in range(5):
            await asyncio.sleep(0)

        channel.gate.set()
        self.fetcher.gate.set()
        assert await refresh == "edited"
        assert await click_task is NavOutcome.EXPIRED

        shown = [decode_nav_id(b.custom_id).epoch for b in message.payload.buttons]
        current = self.registry.current_epoch(message.id)
        assert set(shown) == {current}

        follow = FakeInteraction(message.payload.buttons[-1].custom_id, message_id=message.id)
        assert await self.controller.handle(follow) is NavOutcome.COMMITTED

    @pytest.mark.asyncio
    async def test_refused_edit_releases_epoch(self):
        self.registry.set_epoch(MESSAGE_ID, 1)
        interaction = FakeInteraction("sales_nav:US:1:1")
        edits = []

        async def refused_edit(payload):
            edits.append(payload)
            return len(edits) == 1

        interaction.edit_original = refused_edit

        assert await self.controller.handle(interaction) is NavOutcome.EXPIRED
        assert self.registry.current_epoch(MESSAGE_ID) == 1
        self.warmer.prewarm_around.assert_not_called()

    @pytest.mark.asyncio
    async def test_clicks_on_one_message_run_one_at_a_time(self):
        self.registry.set_epoch(MESSAGE_ID, 1)
        self.fetcher.gate = asyncio.Event()
        first = FakeInteraction("sales_nav:US:1:1")
        second = FakeInteraction("sales_nav:US:2:1")

        tasks = [
            asyncio.create_task(self.controller.handle(first)),
            asyncio.create_task(self.controller.handle(second)),
        ]
        await wait_until(lambda: self.fetcher.calls)
        await asyncio.sleep(0)
        assert self.fetcher.calls == [("US", 1)]

        self.fetcher.gate.set()
        outcomes = await asyncio.gather(*tasks)

        assert outcomes == [NavOutcome.COMMITTED, NavOutcome.COMMITTED]
        assert self.registry.current_epoch(MESSAGE_ID) == 3
        assert second.edits[-1].embed["title"] == "Steam Game Sales - page 3/10"

    @pytest.mark.asyncio
    async def test_expired_before_defer(self):
        self.registry.set_epoch(MESSAGE_ID, 1)
        interaction = FakeInteraction("sales_nav:US:1:1", deferrable=False)

        assert await self.controller.handle(interaction) is NavOutcome.EXPIRED
        assert self.fetcher.calls == []
        assert self.registry.get(MESSAGE_ID).pending == set()

    @pytest.mark.asyncio
    async def test_expired_mid_update(self):
        self.registry.set_epoch(MESSAGE_ID, 1)
        interaction = FakeInteraction("sales_nav:US:1:1")

        async def expired_edit(payload):
            raise InteractionExpiredError("Unknown interaction")

        interaction.edit_original = expired_edit

        assert await self.controller.handle(interaction) is NavOutcome.EXPIRED
        assert interaction.follow_ups == []
        assert self.registry.current_epoch(MESSAGE_ID) == 1

    @pytest.mark.asyncio
    async def test_unknown_epoch_trusted_after_state_loss(self):
        interaction = FakeInteraction("sales_nav:US:2:5")

        assert await self.controller.handle(interaction) is NavOutcome.COMMITTED
        assert self.registry.current_epoch(MESSAGE_ID) == 6

    @pytest.mark.asyncio
    async def test_unknown_epoch_refused_when_configured(self):
        controller = self._controller(trust_unknown_epoch=False)
        interaction = FakeInteraction("sales_nav:US:2:5")

        assert await controller.handle(interaction) is NavOutcome.UNKNOWN_EPOCH
        assert "/sales init" in interaction.ephemeral[0]
        assert self.fetcher.calls == []

    @pytest.mark.asyncio
    async def test_malformed_and_missing_context(self):
        malformed = FakeInteraction("sales_nav:US:1")
        assert await self.controller.handle(malformed) is NavOutcome.MALFORMED
        assert malformed.ephemeral == ["Malformed button."]

        bad_state = FakeInteraction("sales_nav:US:1:0")
        assert await self.controller.handle(bad_state) is NavOutcome.MALFORMED
        assert bad_state.ephemeral == ["Malformed button state."]

        no_message = FakeInteraction("sales_nav:US:1:1", message_id=None)
        assert await self.controller.handle(no_message) is NavOutcome.MISSING_CONTEXT
        assert no_message.ephemeral == ["Missing message context."]

    @pytest.mark.asyncio
    async def test_other_buttons_are_ignored(self):
        interaction = FakeInteraction("music:pause")

        assert await self.controller.handle(interaction) is NavOutcome.IGNORED
        assert interaction.ephemeral == [] and not interaction.deferred


class TestNavStateRegistry:
    """Test state bookkeeping and idle sweep."""

    def setup_method(self):
        self.clock = FakeClock()
        self.registry = NavStateRegistry(ttl_seconds=600, clock=self.clock)

    def test_set_and_read_epoch(self):
        assert self.registry.current_epoch(1) == 0
        self.registry.set_epoch(1, 4)
        assert self.registry.current_epoch(1) == 4

    def test_sweep_drops_idle_states(self):
        self.registry.get(1)
        self.clock.now += 300
        self.registry.get(2)
        self.clock.now += 301

        assert self.registry.sweep() == 1
        assert 1 not in self.registry
        assert 2 in self.registry

    def test_sweep_keeps_busy_states(self):
        state = self.registry.get(1)
        state.pending.add((1, 1))
        self.clock.now += 601

        assert self.registry.sweep() == 0
        assert 1 in self.registry

    def test_forget(self):
        self.registry.set_epoch(1, 2)
        self.registry.forget(1)
        assert len(self.registry) == 0

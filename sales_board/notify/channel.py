"""Interfaces the sales board needs from a chat platform.

``sales_board.notify.discord_bot`` implements these with discord.py; tests
implement them with in-memory fakes.
"""

from typing import Optional, Protocol

from sales_board.notify.render import DisplayPayload


class MessageHandle(Protocol):
    """A sent message that can be edited in place."""

    id: int

    async def edit(self, payload: DisplayPayload) -> None: ...

    async def delete(self) -> None: ...


class MessageChannel(Protocol):
    """A channel boards are posted to."""

    id: int

    async def send(self, payload: DisplayPayload) -> MessageHandle: ...

    async def fetch_message(self, message_id: int) -> Optional[MessageHandle]: ...


class ChannelResolver(Protocol):
    """Looks up channels by id (None when gone or inaccessible)."""

    async def resolve(self, channel_id: int) -> Optional[MessageChannel]: ...


class NavInteraction(Protocol):
    """A button click on a pinned board message."""

    custom_id: str
    message_id: Optional[int]
    user_id: Optional[int]
    current_payload: Optional[DisplayPayload]

    async def defer_update(self) -> bool:
        """Acknowledge the click. False if the interaction already expired."""
        ...

    async def edit_original(self, payload: DisplayPayload) -> bool:
        """
        Edit the message the button belongs to.

        Raises:
            InteractionExpiredError: The interaction token is no longer valid
        """
        ...

    async def reply_ephemeral(self, text: str) -> bool: ...

    async def follow_up_ephemeral(self, text: str) -> bool: ...


class InteractionExpiredError(RuntimeError):
    """The platform no longer accepts responses for this interaction."""
    pass

"""discord.py adapters and the bot that hosts the sales board."""

import logging
from typing import Any, Optional

import discord
from discord import app_commands
from discord.ext import commands

from sales_board.config import settings
from sales_board.notify.channel import InteractionExpiredError
from sales_board.notify.navigation import navigation
from sales_board.notify.render import ButtonSpec, DisplayPayload, is_nav_id
from sales_board.worker.prewarm import prewarmer
from sales_board.worker.scheduler import setup_scheduler
from sales_board.worker.tasks import board_service

logger = logging.getLogger(__name__)

# Discord JSON error codes
UNKNOWN_WEBHOOK = 10015
UNKNOWN_INTERACTION = 10062
EXPIRED_CODES = {UNKNOWN_WEBHOOK, UNKNOWN_INTERACTION}


def build_view(buttons: tuple[ButtonSpec, ...]) -> Optional[discord.ui.View]:
    """One action row of secondary buttons, or None when there are none."""
    if not buttons:
        return None
    view = discord.ui.View(timeout=None)
    for spec in buttons:
        view.add_item(
            discord.ui.Button(
                style=discord.ButtonStyle.secondary,
                label=spec.label,
                custom_id=spec.custom_id,
                disabled=spec.disabled,
            )
        )
    return view


def payload_to_discord(payload: DisplayPayload) -> dict[str, Any]:
    """Keyword arguments for ``send``/``edit`` calls."""
    return {
        "content": payload.content,
        "embed": discord.Embed.from_dict(payload.embed) if payload.embed else None,
        "view": build_view(payload.buttons),
    }


def payload_from_message(message: discord.Message) -> DisplayPayload:
    """Rebuild the payload currently shown on a message."""
    buttons = []
    for row in message.components:
        for child in getattr(row, "children", []):
            if isinstance(child, discord.Button) and child.custom_id:
                buttons.append(
                    ButtonSpec(custom_id=child.custom_id, label=child.label or "", disabled=child.disabled)
                )
    return DisplayPayload(
        embed=message.embeds[0].to_dict() if message.embeds else None,
        content=message.content or None,
        buttons=tuple(buttons),
    )


class DiscordMessageHandle:
    def __init__(self, message: discord.Message):
        self._message = message
        self.id = message.id

    async def edit(self, payload: DisplayPayload) -> None:
        await self._message.edit(**payload_to_discord(payload))

    async def delete(self) -> None:
        await self._message.delete()


class DiscordChannel:
    def __init__(self, channel: discord.abc.Messageable):
        self._channel = channel
        self.id = channel.id

    async def send(self, payload: DisplayPayload) -> DiscordMessageHandle:
        kwargs = {k: v for k, v in payload_to_discord(payload).items() if v is not None}
        message = await self._channel.send(**kwargs)
        return DiscordMessageHandle(message)

    async def fetch_message(self, message_id: int) -> Optional[DiscordMessageHandle]:
        try:
            message = await self._channel.fetch_message(message_id)
        except discord.NotFound:
            return None
        return DiscordMessageHandle(message)


class DiscordChannelResolver:
    """Looks channels up in the client cache, then over the API."""

    def __init__(self, client: discord.Client):
        self.client = client

    async def resolve(self, channel_id: int) -> Optional[DiscordChannel]:
        channel = self.client.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.client.fetch_channel(channel_id)
            except (discord.NotFound, discord.Forbidden) as e:
                logger.debug(f"Channel {channel_id} unavailable: {e}")
                return None
        if not isinstance(channel, (discord.TextChannel, discord.Thread)):
            return None
        return DiscordChannel(channel)


class DiscordNavInteraction:
    """Adapts a component ``discord.Interaction`` to the navigation controller."""

    def __init__(self, interaction: discord.Interaction):
        self._interaction = interaction
        data = interaction.data or {}
        self.custom_id = str(data.get("custom_id") or "")
        message = interaction.message
        self.message_id = message.id if message else None
        self.user_id = interaction.user.id if interaction.user else None
        self.current_payload = payload_from_message(message) if message else None

    async def defer_update(self) -> bool:
        try:
            await self._interaction.response.defer()
            return True
        except discord.InteractionResponded:
            return True
        except discord.NotFound as e:
            logger.debug(f"Interaction expired before defer: {e}")
            return False

    async def edit_original(self, payload: DisplayPayload) -> bool:
        try:
            await self._interaction.edit_original_response(**payload_to_discord(payload))
        except discord.NotFound as e:
            if e.code in EXPIRED_CODES:
                raise InteractionExpiredError(str(e)) from e
            raise
        return True

    async def reply_ephemeral(self, text: str) -> bool:
        try:
            if self._interaction.response.is_done():
                await self._interaction.followup.send(text, ephemeral=True)
            else:
                await self._interaction.response.send_message(text, ephemeral=True)
            return True
        except discord.HTTPException as e:
            logger.debug(f"Ephemeral reply failed: {e}")
            return False

    async def follow_up_ephemeral(self, text: str) -> bool:
        try:
            await self._interaction.followup.send(text, ephemeral=True)
            return True
        except discord.HTTPException as e:
            logger.debug(f"Ephemeral follow-up failed: {e}")
            return False


sales_group = app_commands.Group(
    name="sales",
    description="Steam sales board",
    guild_only=True,
    default_permissions=discord.Permissions(manage_guild=True),
)


@sales_group.command(name="init", description="Post the sales board in this channel (moves it if it exists)")
@app_commands.checks.has_permissions(manage_guild=True)
async def sales_init(interaction: discord.Interaction) -> None:
    await interaction.response.defer(ephemeral=True, thinking=True)

    channel = interaction.channel
    if interaction.guild is None or not isinstance(channel, (discord.TextChannel, discord.Thread)):
        await interaction.followup.send("Run this in a server text channel.", ephemeral=True)
        return

    try:
        board = await board_service.ensure_board(
            interaction.guild.id,
            DiscordChannel(channel),
            DiscordChannelResolver(interaction.client),
        )
    except Exception as e:
        logger.error(f"/sales init failed for guild {interaction.guild.id}: {e}", exc_info=True)
        await interaction.followup.send(f"Error: {e}", ephemeral=True)
        return

    await interaction.followup.send(
        f"Sales board is live in <#{board.channel_id}>.",
        ephemeral=True,
    )


@sales_init.error
async def sales_init_error(interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
    if isinstance(error, app_commands.MissingPermissions):
        text = "You need the Manage Server permission to do that."
    else:
        logger.error(f"/sales init error: {error}")
        text = "Something went wrong."
    if interaction.response.is_done():
        await interaction.followup.send(text, ephemeral=True)
    else:
        await interaction.response.send_message(text, ephemeral=True)


class SalesBoardBot(commands.Bot):
    """Bot hosting the pinned sales boards."""

    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True
        super().__init__(command_prefix="!", intents=intents)
        self.resolver = DiscordChannelResolver(self)
        self.scheduler = None

    async def setup_hook(self) -> None:
        self.tree.add_command(sales_group)
        guild_id = settings.discord_guild_id
        try:
            if guild_id:
                guild = discord.Object(id=guild_id)
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
            else:
                synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands (guild={guild_id or 'global'})")
        except discord.HTTPException as e:
            logger.warning(f"Slash command sync failed: {e}")

    async def on_ready(self) -> None:
        logger.info(f"Bot ready as {self.user} in {len(self.guilds)} guilds")
        board_service.set_resolver(self.resolver)

        # on_ready fires again after reconnects
        if self.scheduler is None:
            self.scheduler = setup_scheduler()
            self.scheduler.start()
            logger.info("Scheduler started")

        if settings.sales_full_warmer_enabled:
            prewarmer.start_full_warm(settings.sales_region_cc)

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id")
        if not is_nav_id(custom_id):
            return
        await navigation.handle(DiscordNavInteraction(interaction))

    async def close(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
        await super().close()

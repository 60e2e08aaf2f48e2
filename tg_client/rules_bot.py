import inspect
import time
from typing import Callable, Optional
from aiogram import Bot, Dispatcher, Router, F
from aiogram.types import Message, CallbackQuery, InlineKeyboardMarkup, InlineKeyboardButton, BotCommand
from aiogram.filters import Command, StateFilter
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.fsm.storage.memory import MemoryStorage
from config import MANAGER_TG_BOT_TOKEN, MANAGER_TG_BOT_IDS, PENDING_INPUT_TTL
from rules import CallbackCodec, NotFound, RulesError, StoreError, UnrecognizedAction, ValidationError
from utils import get_logger
from .menus import Prompt, Reply, RuleMenus, PROMPT_CUSTOM_VALUE, PROMPT_RENAME, PROMPT_RULE_NAME

logger = get_logger("RULES_BOT")


class PendingInputStates(StatesGroup):
    waiting_rule_name = State()
    waiting_new_name = State()
    waiting_custom_value = State()


PROMPT_STATES = {
    PROMPT_RULE_NAME: PendingInputStates.waiting_rule_name,
    PROMPT_RENAME: PendingInputStates.waiting_new_name,
    PROMPT_CUSTOM_VALUE: PendingInputStates.waiting_custom_value,
}


def get_back_to_menu_keyboard():
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="🏠 Back to Menu", callback_data="action_menu")]
    ])


class RulesBot:
    def __init__(
        self,
        menus: RuleMenus,
        codec: CallbackCodec,
        buy_callback: Optional[Callable] = None,
        bot_token: str = MANAGER_TG_BOT_TOKEN,
        chat_ids: list = MANAGER_TG_BOT_IDS,
        pending_ttl: int = PENDING_INPUT_TTL,
    ):
        self.menus = menus
        self.codec = codec
        self.buy_callback = buy_callback
        self.bot_token = bot_token
        self.chat_ids = [str(chat_id) for chat_id in chat_ids if chat_id]
        self.pending_ttl = pending_ttl
        self.enabled = bool(bot_token and self.chat_ids)
        self._polling = False

        if not self.enabled:
            logger.warning("Rules bot disabled (no API key configured)")
            return

        self.bot = Bot(token=bot_token)
        self.storage = MemoryStorage()
        self.dp = Dispatcher(storage=self.storage)
        self.router = Router()
        self._setup_handlers()
        self.dp.include_router(self.router)

    async def _set_commands(self):
        commands = [
            BotCommand(command="start", description="Open the rules menu"),
            BotCommand(command="rules", description="List your rules"),
            BotCommand(command="cancel", description="Cancel current operation"),
            BotCommand(command="help", description="Show help"),
        ]
        await self.bot.set_my_commands(commands)

    def is_allowed(self, chat_id) -> bool:
        return str(chat_id) in self.chat_ids

    # ===== replies =====

    async def _apply_reply(self, state: FSMContext, reply: Reply):
        """Store the pending input context a reply asks for, or drop the old one."""
        if reply.prompt is not None:
            await state.set_state(PROMPT_STATES[reply.prompt.kind])
            await state.set_data({
                "prompt_kind": reply.prompt.kind,
                "prompt_data": reply.prompt.data,
                "prompt_stamp": time.time(),
            })
        else:
            await state.set_state(None)
            await state.set_data(dict(reply.context))

    @staticmethod
    async def _send(message: Message, reply: Reply, edit: bool):
        if edit:
            await message.edit_text(reply.text, parse_mode="HTML", reply_markup=reply.keyboard)
        else:
            await message.answer(reply.text, parse_mode="HTML", reply_markup=reply.keyboard)

    async def _send_error(self, message: Message, state: FSMContext, error: RulesError):
        if isinstance(error, ValidationError):
            # pending input (if any) stays, the user can answer again
            await message.answer(f"⚠️ {error.message}\n\nPlease try again.", reply_markup=get_back_to_menu_keyboard())
            return

        await state.clear()
        if isinstance(error, UnrecognizedAction):
            logger.warning(str(error))
            await message.answer("⚠️ Unknown action. Please try again from the menu.", reply_markup=get_back_to_menu_keyboard())
        elif isinstance(error, NotFound):
            await message.answer(f"❌ {error.kind.capitalize()} not found.", reply_markup=get_back_to_menu_keyboard())
        elif isinstance(error, StoreError):
            logger.error(f"Store failure: {error}")
            await message.answer("❌ Failed to save changes, nothing was modified.", reply_markup=get_back_to_menu_keyboard())
        else:
            logger.exception(f"Unexpected rules error: {error}")
            await message.answer("❌ Something went wrong.", reply_markup=get_back_to_menu_keyboard())

    # ===== entry points =====

    async def handle_callback(self, callback: CallbackQuery, state: FSMContext):
        owner_id = str(callback.message.chat.id)
        try:
            action = self.codec.decode(callback.data)
            if action.verb == "confirm_buy":
                await self._confirm_buy(callback, owner_id, action.address, action.amount)
                return
            if action.verb == "action_cancel":
                await state.clear()
            reply = await self.menus.handle_action(owner_id, action, await state.get_data())
        except RulesError as e:
            await callback.answer()
            await self._send_error(callback.message, state, e)
            return

        await callback.answer()
        await self._apply_reply(state, reply)
        await self._send(callback.message, reply, edit=True)

    async def handle_text(self, message: Message, state: FSMContext):
        data = await state.get_data()
        stamp = data.get("prompt_stamp", 0)
        if time.time() - stamp > self.pending_ttl:
            await state.clear()
            await message.answer("⌛ Input expired. Please start again.", reply_markup=get_back_to_menu_keyboard())
            return

        prompt = Prompt(data["prompt_kind"], data.get("prompt_data", {}))
        try:
            reply = await self.menus.handle_text(message.chat.id, prompt, message.text or "")
        except RulesError as e:
            await self._send_error(message, state, e)
            return

        await self._apply_reply(state, reply)
        await self._send(message, reply, edit=False)

    async def _confirm_buy(self, callback: CallbackQuery, owner_id: str, address: str, amount: str):
        await callback.answer()
        if self.buy_callback is None:
            await callback.message.answer("⚠️ Trading is not configured.", reply_markup=get_back_to_menu_keyboard())
            return

        result = self.buy_callback(owner_id, address, amount)
        if inspect.isawaitable(result):
            await result
        logger.info(f"Buy confirmed by {owner_id}: {amount} of {address}")
        await callback.message.edit_text(
            f"✅ Buy order submitted\n\n<code>{address}</code>\nAmount: {amount}",
            parse_mode="HTML",
            reply_markup=get_back_to_menu_keyboard(),
        )

    def _setup_handlers(self):

        @self.router.message(Command("cancel"))
        async def cmd_cancel(message: Message, state: FSMContext):
            if not self.is_allowed(message.chat.id):
                return
            await state.clear()
            await message.answer("❌ Operation cancelled.", reply_markup=get_back_to_menu_keyboard())

        @self.router.message(Command("start"))
        async def cmd_start(message: Message, state: FSMContext):
            if not self.is_allowed(message.chat.id):
                return
            await state.clear()
            try:
                reply = await self.menus.main_menu(str(message.chat.id))
            except RulesError as e:
                await self._send_error(message, state, e)
                return
            await self._send(message, reply, edit=False)

        @self.router.message(Command("rules"))
        async def cmd_rules(message: Message, state: FSMContext):
            if not self.is_allowed(message.chat.id):
                return
            await state.clear()
            try:
                reply = await self.menus.handle_action(message.chat.id, self.codec.decode("rules_list"))
            except RulesError as e:
                await self._send_error(message, state, e)
                return
            await self._send(message, reply, edit=False)

        @self.router.message(Command("help"))
        async def cmd_help(message: Message):
            if not self.is_allowed(message.chat.id):
                return
            text = (
                "<b>📋 Rules Bot</b>\n\n"
                "• /start - main menu\n"
                "• /rules - list your rules\n"
                "• /cancel - cancel current input\n\n"
                "Only one rule can be active at a time. Autonomous mode requires "
                "an active autonomous strategy rule."
            )
            await message.answer(text, parse_mode="HTML", reply_markup=get_back_to_menu_keyboard())

        @self.router.message(
            F.text,
            StateFilter(
                PendingInputStates.waiting_rule_name,
                PendingInputStates.waiting_new_name,
                PendingInputStates.waiting_custom_value,
            ),
        )
        async def process_pending_input(message: Message, state: FSMContext):
            if not self.is_allowed(message.chat.id):
                return
            await self.handle_text(message, state)

        @self.router.callback_query()
        async def process_callback(callback: CallbackQuery, state: FSMContext):
            if callback.message is None or not self.is_allowed(callback.message.chat.id):
                await callback.answer()
                return
            await self.handle_callback(callback, state)

    async def start(self):
        if not self.enabled:
            return
        await self._set_commands()
        logger.info("Starting Rules Bot polling...")
        self._polling = True
        try:
            await self.dp.start_polling(self.bot)
        finally:
            self._polling = False

    async def stop(self):
        if not self.enabled:
            return
        if self._polling:
            await self.dp.stop_polling()
        await self.bot.session.close()

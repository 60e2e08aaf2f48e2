"""
Screens of the rules bot.

`RuleMenus.handle_action` maps a decoded callback action to a `Reply`
(text plus inline keyboard). Every button is encoded through the callback
codec, so nothing here builds callback data by hand. Text input is not read
here: a reply that needs it carries a `Prompt`, and the bot feeds the answer
back through `handle_text`.
"""
from dataclasses import dataclass, field
from html import escape
from typing import Dict, List, Optional
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from config import RULES_PER_PAGE
from rules import (
    CallbackAction,
    CallbackCodec,
    ConditionCatalog,
    ConditionValueFormatter,
    NotFound,
    Rule,
    RuleLifecycleManager,
    RuleType,
    UnrecognizedAction,
)
from rules.catalog import DISCOVERY, MANAGEMENT, MANUAL

PROMPT_RULE_NAME = "rule_name"
PROMPT_RENAME = "rename"
PROMPT_CUSTOM_VALUE = "custom_value"

RULE_TYPE_TITLES = {
    RuleType.FILTER: "🔍 Filter",
    RuleType.STRATEGY: "📈 Strategy",
    RuleType.MANUAL: "✋ Manual",
    RuleType.DISCOVERY: "🧭 Discovery",
    RuleType.AUTONOMOUS_STRATEGY: "🤖 Autonomous Strategy",
}
CATEGORY_TITLES = {
    DISCOVERY: "Discovery",
    MANAGEMENT: "Management",
    MANUAL: "Manual",
}


@dataclass
class Prompt:
    kind: str
    data: Dict[str, str] = field(default_factory=dict)


@dataclass
class Reply:
    text: str
    keyboard: Optional[InlineKeyboardMarkup] = None
    prompt: Optional[Prompt] = None
    context: Dict[str, str] = field(default_factory=dict)


class RuleMenus:
    def __init__(
        self,
        lifecycle: RuleLifecycleManager,
        catalog: ConditionCatalog,
        codec: CallbackCodec,
        formatter: ConditionValueFormatter,
        per_page: int = RULES_PER_PAGE,
    ):
        self.lifecycle = lifecycle
        self.catalog = catalog
        self.codec = codec
        self.formatter = formatter
        self.per_page = per_page
        self._handlers = {
            "rules": self.main_menu,
            "action_menu": self.main_menu,
            "action_cancel": self.cancelled,
            "rules_list": self.rules_list,
            "rules_page": self.rules_list,
            "rules_create": self.choose_rule_type,
            "rules_stats": self.owner_stats,
            "delete_rules_menu": self.delete_rules_menu,
            "delete_all_rules": self.confirm_delete_all,
            "confirm_delete_all_rules": self.delete_all,
            "toggle_all_rules": self.deactivate_all,
            "toggle_autonomous": self.toggle_autonomous,
            "rule_type": self.ask_rule_name,
            "rule": self.rule_details,
            "rule_toggle": self.toggle_rule,
            "rule_stats": self.rule_stats,
            "rule_edit": self.edit_rule,
            "rule_edit_name": self.ask_new_name,
            "rule_edit_conditions": self.conditions_overview,
            "rule_edit_condition": self.pick_condition_to_edit,
            "rule_add_condition": self.choose_condition_type,
            "rule_remove_condition": self.pick_condition_to_remove,
            "rule_delete": self.confirm_delete_rule,
            "rule_delete_confirm": self.delete_rule,
            "add_condition": self.choose_preset,
            "set_condition": self.set_condition,
            "update_condition": self.update_condition,
            "edit_condition": self.edit_condition,
            "remove_condition": self.remove_condition,
            "custom": self.ask_custom_value,
        }

    # ===== keyboard helpers =====

    def button(self, text: str, verb: str, **fields) -> InlineKeyboardButton:
        return InlineKeyboardButton(text=text, callback_data=self.codec.encode(CallbackAction(verb, **fields)))

    @staticmethod
    def rows(buttons: List[InlineKeyboardButton], width: int = 2) -> List[List[InlineKeyboardButton]]:
        return [buttons[i:i + width] for i in range(0, len(buttons), width)]

    def keyboard(self, *rows: List[InlineKeyboardButton]) -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup(inline_keyboard=[row for row in rows if row])

    def back_to_menu(self) -> List[InlineKeyboardButton]:
        return [self.button("🏠 Back to Menu", "action_menu")]

    def cancel_keyboard(self) -> InlineKeyboardMarkup:
        return self.keyboard([self.button("Cancel", "action_cancel")])

    # ===== dispatch =====

    async def handle_action(self, owner_id, action: CallbackAction, context: Optional[dict] = None) -> Reply:
        handler = self._handlers.get(action.verb)
        if handler is None:
            raise UnrecognizedAction(action, "no screen for this action")
        return await handler(str(owner_id), action, context or {})

    async def handle_text(self, owner_id, prompt: Prompt, text: str) -> Reply:
        owner_id = str(owner_id)
        if prompt.kind == PROMPT_RULE_NAME:
            rule = await self.lifecycle.create_rule(owner_id, text, prompt.data.get("rule_type", RuleType.FILTER))
            return await self._render_rule(rule, header="✅ Rule created")
        if prompt.kind == PROMPT_RENAME:
            await self._owned_rule(owner_id, prompt.data["rule_id"])
            rule = await self.lifecycle.rename(prompt.data["rule_id"], text)
            return await self._render_rule(rule, header="✅ Rule renamed")
        if prompt.kind == PROMPT_CUSTOM_VALUE:
            rule = await self._owned_rule(owner_id, prompt.data["rule_id"])
            condition = await self.lifecycle.update_condition(
                prompt.data["condition_id"],
                text,
                type_key=prompt.data["type_key"],
                rule_id=rule.id,
            )
            value = self.formatter.format_condition(condition)
            return await self._render_conditions(rule, header=f"✅ Updated: {escape(value)}")
        raise UnrecognizedAction(prompt.kind, "unknown prompt")

    async def _owned_rule(self, owner_id: str, rule_id) -> Rule:
        rule = await self.lifecycle.get_rule(rule_id)
        if rule.owner_id != owner_id:
            raise NotFound("rule", rule_id)
        return rule

    # ===== main menu =====

    async def main_menu(self, owner_id: str, action=None, context=None, header: str = "") -> Reply:
        rules = await self.lifecycle.list_rules(owner_id)
        settings = await self.lifecycle.get_owner_settings(owner_id)
        active = next((rule for rule in rules if rule.active), None)

        text = f"{header}\n\n" if header else ""
        text += (
            "👋 <b>Rules Manager</b>\n\n"
            f"Rules: {len(rules)}\n"
            f"Active rule: {escape(active.name) if active else 'none'}\n"
            f"Autonomous mode: {'ON' if settings.autonomous_enabled else 'OFF'}"
        )
        keyboard = self.keyboard(
            [self.button("📋 My Rules", "rules_list"), self.button("➕ Create Rule", "rules_create")],
            [self.button("📊 Statistics", "rules_stats"), self.button("🤖 Autonomous", "toggle_autonomous")],
            [self.button("⏸ Deactivate All", "toggle_all_rules"), self.button("🗑 Delete Rules", "delete_rules_menu")],
        )
        return Reply(text, keyboard)

    async def cancelled(self, owner_id: str, action, context) -> Reply:
        return await self.main_menu(owner_id, header="❌ Operation cancelled.")

    async def rules_list(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rules = await self.lifecycle.list_rules(owner_id)
        if not rules:
            return Reply(
                "📭 No rules yet.",
                self.keyboard([self.button("➕ Create Rule", "rules_create")], self.back_to_menu()),
            )

        total_pages = (len(rules) + self.per_page - 1) // self.per_page
        page = int(action.page or 0)
        page = max(0, min(page, total_pages - 1))
        page_rules = rules[page * self.per_page:(page + 1) * self.per_page]

        text = f"📋 <b>Your Rules</b> (Page {page + 1}/{total_pages})\n\n"
        buttons = []
        for rule in page_rules:
            marker = "🟢" if rule.active else "⚪️"
            text += f"{marker} <b>{escape(rule.name)}</b> ({rule.type.value})\n"
            buttons.append([self.button(f"{marker} {rule.name}", "rule", rule_id=rule.id)])

        nav = []
        if page > 0:
            nav.append(self.button("◀️ Prev", "rules_page", page=page - 1))
        if page < total_pages - 1:
            nav.append(self.button("Next ▶️", "rules_page", page=page + 1))
        return Reply(text, self.keyboard(*buttons, nav, self.back_to_menu()))

    async def owner_stats(self, owner_id: str, action, context) -> Reply:
        stats = await self.lifecycle.owner_stats(owner_id)
        top = "\n".join(
            f"{i}. {escape(name)} ${profit:.2f}" for i, (name, profit) in enumerate(stats.top_rules, 1)
        ) or "No performance data available"
        text = (
            "📊 <b>Rules Statistics</b>\n\n"
            f"Total rules: {stats.total}\n"
            f"Active: {stats.active}\n"
            f"Inactive: {stats.inactive}\n"
            f"Total trades: {stats.total_trades}\n"
            f"Total profit: ${stats.total_profit:.2f}\n"
            f"Average success rate: {stats.avg_success_rate:.1f}%\n\n"
            f"<b>Top rules</b>\n{top}"
        )
        return Reply(text, self.keyboard(self.back_to_menu()))

    async def toggle_autonomous(self, owner_id: str, action, context) -> Reply:
        settings = await self.lifecycle.get_owner_settings(owner_id)
        settings = await self.lifecycle.set_autonomous_mode(owner_id, not settings.autonomous_enabled)
        state = "enabled" if settings.autonomous_enabled else "disabled"
        return await self.main_menu(owner_id, header=f"🤖 Autonomous mode {state}.")

    async def deactivate_all(self, owner_id: str, action, context) -> Reply:
        count = await self.lifecycle.deactivate_all(owner_id)
        return await self.main_menu(owner_id, header=f"⏸ Deactivated {count} rule(s).")

    # ===== deletion =====

    async def delete_rules_menu(self, owner_id: str, action, context) -> Reply:
        rules = await self.lifecycle.list_rules(owner_id)
        buttons = [[self.button(f"🗑 {rule.name}", "rule_delete", rule_id=rule.id)] for rule in rules]
        if rules:
            buttons.append([self.button("🗑 Delete ALL rules", "delete_all_rules")])
        text = "🗑 <b>Delete Rules</b>\n\nSelect a rule to delete:" if rules else "📭 No rules to delete."
        return Reply(text, self.keyboard(*buttons, self.back_to_menu()))

    async def confirm_delete_all(self, owner_id: str, action, context) -> Reply:
        rules = await self.lifecycle.list_rules(owner_id)
        return Reply(
            f"⚠️ Delete all {len(rules)} rule(s)? Autonomous mode will be disabled.",
            self.keyboard([
                self.button("✅ Yes, delete all", "confirm_delete_all_rules"),
                self.button("Cancel", "action_cancel"),
            ]),
        )

    async def delete_all(self, owner_id: str, action, context) -> Reply:
        count = await self.lifecycle.delete_all(owner_id)
        return await self.main_menu(owner_id, header=f"🗑 Deleted {count} rule(s). Autonomous mode disabled.")

    async def confirm_delete_rule(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        return Reply(
            f"⚠️ Delete rule <b>{escape(rule.name)}</b> and all its conditions?",
            self.keyboard([
                self.button("✅ Delete", "rule_delete_confirm", rule_id=rule.id),
                self.button("Cancel", "rule", rule_id=rule.id),
            ]),
        )

    async def delete_rule(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        await self.lifecycle.delete(rule.id)
        return Reply(
            f"🗑 Rule <b>{escape(rule.name)}</b> deleted.",
            self.keyboard([self.button("📋 My Rules", "rules_list")], self.back_to_menu()),
        )

    # ===== creation and editing =====

    async def choose_rule_type(self, owner_id: str, action, context) -> Reply:
        buttons = [self.button(title, "rule_type", rule_type=rule_type) for rule_type, title in RULE_TYPE_TITLES.items()]
        return Reply("➕ <b>Create Rule</b>\n\nSelect rule type:", self.keyboard(*self.rows(buttons), self.back_to_menu()))

    async def ask_rule_name(self, owner_id: str, action: CallbackAction, context) -> Reply:
        return Reply(
            f"➕ <b>New {RULE_TYPE_TITLES[RuleType(action.rule_type)]} rule</b>\n\n"
            f"Enter a name ({self.lifecycle.name_min_length}-{self.lifecycle.name_max_length} characters):",
            self.cancel_keyboard(),
            prompt=Prompt(PROMPT_RULE_NAME, {"rule_type": action.rule_type}),
        )

    async def rule_details(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        return await self._render_rule(rule)

    async def _render_rule(self, rule: Rule, header: str = "") -> Reply:
        conditions = await self.lifecycle.get_conditions(rule.id)
        text = f"{header}\n\n" if header else ""
        text += (
            f"📌 <b>{escape(rule.name)}</b>\n"
            f"Type: {rule.type.value}\n"
            f"Status: {'🟢 Active' if rule.active else '⚪️ Inactive'}\n"
        )
        if rule.description:
            text += f"Description: {escape(rule.description)}\n"
        text += "\n<b>Conditions</b>\n"
        if conditions:
            for i, condition in enumerate(conditions, 1):
                title = self.formatter.title(condition.type_key)
                text += f"{i}. {escape(title)}: {escape(self.formatter.format_condition(condition))}\n"
        else:
            text += "No conditions yet\n"

        keyboard = self.keyboard(
            [
                self.button("⏸ Deactivate" if rule.active else "▶️ Activate", "rule_toggle", rule_id=rule.id),
                self.button("✏️ Edit", "rule_edit", rule_id=rule.id),
            ],
            [
                self.button("📊 Stats", "rule_stats", rule_id=rule.id),
                self.button("🗑 Delete", "rule_delete", rule_id=rule.id),
            ],
            [self.button("◀️ Back", "rules_list")],
        )
        return Reply(text, keyboard)

    async def toggle_rule(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        rule = await self.lifecycle.toggle(rule.id)
        return await self._render_rule(rule, header="🟢 Rule activated" if rule.active else "⏸ Rule deactivated")

    async def rule_stats(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        text = (
            f"📊 <b>{escape(rule.name)}</b>\n\n"
            f"Trades: {rule.trade_count}\n"
            f"Successful: {rule.success_count}\n"
            f"Failed: {rule.failure_count}\n"
            f"Success rate: {rule.success_rate:.1f}%\n"
            f"Total profit: ${rule.total_profit:.2f}\n"
            f"Created: {rule.created_at}\n"
            f"Last check: {rule.last_check_at or 'never'}"
        )
        return Reply(text, self.keyboard([self.button("◀️ Back", "rule", rule_id=rule.id)]))

    async def edit_rule(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        return Reply(
            f"✏️ <b>Edit {escape(rule.name)}</b>",
            self.keyboard(
                [self.button("📝 Rename", "rule_edit_name", rule_id=rule.id)],
                [self.button("⚙️ Conditions", "rule_edit_conditions", rule_id=rule.id)],
                [self.button("◀️ Back", "rule", rule_id=rule.id)],
            ),
        )

    async def ask_new_name(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        return Reply(
            f"📝 Current name: <b>{escape(rule.name)}</b>\n\n"
            f"Enter a new name ({self.lifecycle.name_min_length}-{self.lifecycle.name_max_length} characters):",
            self.cancel_keyboard(),
            prompt=Prompt(PROMPT_RENAME, {"rule_id": str(rule.id)}),
        )

    # ===== conditions =====

    async def conditions_overview(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        return await self._render_conditions(rule)

    async def _render_conditions(self, rule: Rule, header: str = "") -> Reply:
        conditions = await self.lifecycle.get_conditions(rule.id)
        text = f"{header}\n\n" if header else ""
        text += f"⚙️ <b>Conditions of {escape(rule.name)}</b>\n\n"
        for i, condition in enumerate(conditions, 1):
            title = self.formatter.title(condition.type_key)
            text += f"{i}. {escape(title)}: {escape(self.formatter.format_condition(condition))}\n"
        if not conditions:
            text += "No conditions yet\n"

        edit_row = [self.button("➕ Add", "rule_add_condition", rule_id=rule.id)]
        if conditions:
            edit_row.append(self.button("✏️ Edit", "rule_edit_condition", rule_id=rule.id))
            edit_row.append(self.button("➖ Remove", "rule_remove_condition", rule_id=rule.id))
        return Reply(text, self.keyboard(edit_row, [self.button("◀️ Back", "rule", rule_id=rule.id)]))

    async def _pick_condition(self, owner_id: str, action: CallbackAction, verb: str, title: str) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        conditions = await self.lifecycle.get_conditions(rule.id)
        buttons = []
        for condition in conditions:
            label = f"{self.formatter.title(condition.type_key)}: {self.formatter.format_condition(condition)}"
            buttons.append([self.button(label, verb, condition_id=condition.id, rule_id=rule.id)])
        back = [self.button("◀️ Back", "rule_edit_conditions", rule_id=rule.id)]
        return Reply(title, self.keyboard(*buttons, back))

    async def pick_condition_to_edit(self, owner_id: str, action: CallbackAction, context) -> Reply:
        return await self._pick_condition(owner_id, action, "edit_condition", "✏️ Select a condition to edit:")

    async def pick_condition_to_remove(self, owner_id: str, action: CallbackAction, context) -> Reply:
        return await self._pick_condition(owner_id, action, "remove_condition", "➖ Select a condition to remove:")

    async def choose_condition_type(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        rows = []
        for category in (DISCOVERY, MANAGEMENT, MANUAL):
            buttons = [
                self.button(
                    f"{CATEGORY_TITLES[category]} · {schema.title}",
                    "add_condition",
                    type_key=f"{category}_{schema.type_key}",
                    rule_id=rule.id,
                )
                for schema in self.catalog.schemas(category)
            ]
            rows.extend(self.rows(buttons))
        rows.append([self.button("◀️ Back", "rule_edit_conditions", rule_id=rule.id)])
        return Reply("➕ <b>Add Condition</b>\n\nSelect condition type:", self.keyboard(*rows))

    async def choose_preset(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        schema = self.catalog.lookup(action.type_key)
        buttons = [
            self.button(preset.title, "set_condition", type_key=schema.type_key, value=preset.label, rule_id=rule.id)
            for preset in schema.presets
        ]
        return Reply(
            f"➕ <b>{escape(schema.title)}</b>\n\nSelect a value:",
            self.keyboard(*self.rows(buttons), [self.button("◀️ Back", "rule_add_condition", rule_id=rule.id)]),
            context={"pending_type_key": action.type_key, "pending_rule_id": str(rule.id)},
        )

    def _pending_type_key(self, action: CallbackAction, context: dict) -> str:
        """Category qualified key picked on the previous screen, if it is the same family."""
        pending = context.get("pending_type_key")
        if (
            pending in self.catalog
            and context.get("pending_rule_id") == action.rule_id
            and self.catalog.family_key(pending) == action.type_key
        ):
            return pending
        return action.type_key

    async def set_condition(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        type_key = self._pending_type_key(action, context)
        condition = await self.lifecycle.add_condition(rule.id, type_key, action.value)
        value = self.formatter.format_condition(condition)
        return await self._render_conditions(rule, header=f"✅ Added {escape(self.formatter.title(type_key))}: {escape(value)}")

    async def edit_condition(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        condition = await self.lifecycle.get_condition(action.condition_id, rule_id=rule.id)
        schema = self.catalog.lookup(condition.type_key)
        buttons = [
            self.button(
                preset.title,
                "update_condition",
                type_key=schema.type_key,
                value=preset.label,
                condition_id=condition.id,
                rule_id=rule.id,
            )
            for preset in schema.presets
        ]
        extra = []
        if schema.custom_bounds is not None:
            extra.append(self.button("✍️ Custom", "custom", type_key=schema.type_key, condition_id=condition.id, rule_id=rule.id))
        extra.append(self.button("➖ Remove", "remove_condition", condition_id=condition.id, rule_id=rule.id))
        text = (
            f"✏️ <b>{escape(schema.title)}</b>\n\n"
            f"Current: {escape(self.formatter.format_condition(condition))}\n\n"
            "Select a new value:"
        )
        return Reply(
            text,
            self.keyboard(*self.rows(buttons), extra, [self.button("◀️ Back", "rule_edit_conditions", rule_id=rule.id)]),
        )

    async def update_condition(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        condition = await self.lifecycle.update_condition(
            action.condition_id, action.value, type_key=action.type_key, rule_id=rule.id
        )
        value = self.formatter.format_condition(condition)
        return await self._render_conditions(rule, header=f"✅ Updated: {escape(value)}")

    async def remove_condition(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        condition = await self.lifecycle.remove_condition(action.condition_id, rule_id=rule.id)
        return await self._render_conditions(
            rule, header=f"➖ Removed {escape(self.formatter.title(condition.type_key))}"
        )

    async def ask_custom_value(self, owner_id: str, action: CallbackAction, context) -> Reply:
        rule = await self._owned_rule(owner_id, action.rule_id)
        condition = await self.lifecycle.get_condition(action.condition_id, rule_id=rule.id)
        schema = self.catalog.lookup(action.type_key)
        lo, hi = schema.custom_bounds
        return Reply(
            f"✍️ <b>{escape(schema.title)}</b>\n\n"
            f"Current: {escape(self.formatter.format_condition(condition))}\n\n"
            f"Enter a value between {lo} and {hi}:",
            self.cancel_keyboard(),
            prompt=Prompt(
                PROMPT_CUSTOM_VALUE,
                {"condition_id": str(condition.id), "rule_id": str(rule.id), "type_key": schema.type_key},
            ),
        )

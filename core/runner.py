from typing import Callable, Optional
from config import RULES_DB_PATH
from utils import get_logger
from rules import (
    CallbackCodec,
    ConditionCatalog,
    ConditionValueFormatter,
    JsonRuleStore,
    RuleLifecycleManager,
    RuleStore,
)
from tg_client import RuleMenus, RulesBot


class Runner:
    def __init__(
        self,
        store: Optional[RuleStore] = None,
        db_path: str = RULES_DB_PATH,
        buy_callback: Optional[Callable] = None,
    ):
        self.logger = get_logger("RUNNER")
        self.store = store or JsonRuleStore(db_path)
        self.catalog = ConditionCatalog()
        self.codec = CallbackCodec(self.catalog)
        self.formatter = ConditionValueFormatter(self.catalog)
        self.lifecycle = RuleLifecycleManager(self.store, self.catalog)
        self.menus = RuleMenus(self.lifecycle, self.catalog, self.codec, self.formatter)
        self.buy_callback = buy_callback
        self.rules_bot: RulesBot = None

    def _init_components(self):
        self.rules_bot = RulesBot(
            menus=self.menus,
            codec=self.codec,
            buy_callback=self.buy_callback,
        )
        self.logger.success(f"Initialized {len(list(self.catalog))} condition types, {len(self.codec.grammar)} actions")

    async def start(self):
        self._init_components()
        if not self.rules_bot.enabled:
            self.logger.error("Nothing to run: configure MANAGER_TG_BOT_TOKEN and MANAGER_TG_BOT_IDS")
            return

        try:
            await self.rules_bot.start()
        finally:
            await self.rules_bot.stop()

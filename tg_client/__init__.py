from .menus import RuleMenus, Reply, Prompt
from .rules_bot import RulesBot

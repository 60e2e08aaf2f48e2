"""
Rule lifecycle: creation, activation, deletion and condition edits.

Every mutating operation runs inside one store transaction, which is what
keeps the two owner-level invariants observable at all times:

* at most one rule per owner is active;
* autonomous mode is on only while an active autonomous_strategy rule exists.
"""
from typing import List, Optional
from config import RULE_NAME_MAX_LENGTH, RULE_NAME_MIN_LENGTH
from utils import get_logger
from .catalog import ConditionCatalog
from .errors import NotFound, ValidationError
from .models import Condition, OwnerSettings, Rule, RulesStats, RuleType
from .store import RuleStore

logger = get_logger("LIFECYCLE")


class RuleLifecycleManager:
    def __init__(
        self,
        store: RuleStore,
        catalog: ConditionCatalog,
        name_min_length: int = RULE_NAME_MIN_LENGTH,
        name_max_length: int = RULE_NAME_MAX_LENGTH,
    ):
        self.store = store
        self.catalog = catalog
        self.name_min_length = name_min_length
        self.name_max_length = name_max_length

    # ===== helpers =====

    def _validate_name(self, name) -> str:
        name = (name or "").strip()
        if not self.name_min_length <= len(name) <= self.name_max_length:
            raise ValidationError(
                f"Rule name must be between {self.name_min_length} and {self.name_max_length} characters"
            )
        return name

    @staticmethod
    async def _require_rule(tx: RuleStore, rule_id) -> Rule:
        rule = await tx.get_rule(rule_id)
        if rule is None:
            raise NotFound("rule", rule_id)
        return rule

    @staticmethod
    async def _require_condition(tx: RuleStore, condition_id, rule_id=None) -> Condition:
        condition = await tx.get_condition_by_id(condition_id)
        if condition is None or (rule_id is not None and condition.rule_id != int(rule_id)):
            raise NotFound("condition", condition_id)
        return condition

    @staticmethod
    async def _enforce_autonomous_invariant(tx: RuleStore, owner_id) -> bool:
        """Switch autonomous mode off when no active autonomous rule is left.

        Returns True when the flag was switched off."""
        settings = await tx.get_owner_settings(owner_id)
        if not settings.autonomous_enabled:
            return False
        rules = await tx.list_rules_by_owner(owner_id)
        if any(rule.active and rule.is_autonomous for rule in rules):
            return False
        await tx.update_owner_settings(owner_id, {"autonomous_enabled": False})
        logger.info(f"Autonomous mode disabled for owner {owner_id}: no active autonomous rules left")
        return True

    # ===== rules =====

    async def create_rule(self, owner_id, name: str, rule_type=RuleType.FILTER, description: Optional[str] = None) -> Rule:
        name = self._validate_name(name)
        try:
            rule_type = RuleType(rule_type)
        except ValueError:
            raise ValidationError(f"Unknown rule type: {rule_type}")

        async with self.store.transaction() as tx:
            rule = await tx.create_rule(owner_id, {
                "name": name,
                "type": rule_type,
                "description": description,
                "active": False,
            })
        logger.info(f"Created {rule.type.value} rule #{rule.id} '{rule.name}' for owner {owner_id}")
        return rule

    async def activate(self, rule_id) -> Rule:
        async with self.store.transaction() as tx:
            rule = await self._require_rule(tx, rule_id)
            for sibling in await tx.list_rules_by_owner(rule.owner_id):
                if sibling.active and sibling.id != rule.id:
                    await tx.update_rule(sibling.id, {"active": False})
            rule = await tx.update_rule(rule.id, {"active": True})
            await self._enforce_autonomous_invariant(tx, rule.owner_id)
        logger.info(f"Activated rule #{rule.id} for owner {rule.owner_id}")
        return rule

    async def deactivate(self, rule_id) -> Rule:
        async with self.store.transaction() as tx:
            rule = await self._require_rule(tx, rule_id)
            rule = await tx.update_rule(rule.id, {"active": False})
            await self._enforce_autonomous_invariant(tx, rule.owner_id)
        logger.info(f"Deactivated rule #{rule.id} for owner {rule.owner_id}")
        return rule

    async def toggle(self, rule_id) -> Rule:
        rule = await self.get_rule(rule_id)
        if rule.active:
            return await self.deactivate(rule.id)
        return await self.activate(rule.id)

    async def deactivate_all(self, owner_id) -> int:
        count = 0
        async with self.store.transaction() as tx:
            for rule in await tx.list_rules_by_owner(owner_id):
                if rule.active:
                    await tx.update_rule(rule.id, {"active": False})
                    count += 1
            await self._enforce_autonomous_invariant(tx, owner_id)
        logger.info(f"Deactivated {count} rules for owner {owner_id}")
        return count

    async def delete(self, rule_id) -> Rule:
        async with self.store.transaction() as tx:
            rule = await self._require_rule(tx, rule_id)
            await tx.delete_rule(rule.id)
            await self._enforce_autonomous_invariant(tx, rule.owner_id)
        logger.info(f"Deleted rule #{rule.id} '{rule.name}' for owner {rule.owner_id}")
        return rule

    async def delete_all(self, owner_id) -> int:
        async with self.store.transaction() as tx:
            rules = await tx.list_rules_by_owner(owner_id)
            for rule in rules:
                await tx.delete_rule(rule.id)
            await tx.update_owner_settings(owner_id, {"autonomous_enabled": False})
        logger.info(f"Deleted all {len(rules)} rules for owner {owner_id}")
        return len(rules)

    async def rename(self, rule_id, new_name: str) -> Rule:
        name = self._validate_name(new_name)
        async with self.store.transaction() as tx:
            rule = await self._require_rule(tx, rule_id)
            rule = await tx.update_rule(rule.id, {"name": name})
        logger.info(f"Renamed rule #{rule.id} to '{name}'")
        return rule

    async def set_autonomous_mode(self, owner_id, enabled: bool) -> OwnerSettings:
        async with self.store.transaction() as tx:
            if enabled:
                rules = await tx.list_rules_by_owner(owner_id)
                if not any(rule.active and rule.is_autonomous for rule in rules):
                    raise ValidationError("Activate an autonomous strategy rule before enabling autonomous mode")
            settings = await tx.update_owner_settings(owner_id, {"autonomous_enabled": bool(enabled)})
        logger.info(f"Autonomous mode {'enabled' if enabled else 'disabled'} for owner {owner_id}")
        return settings

    # ===== conditions =====

    async def add_condition(self, rule_id, type_key: str, raw_value) -> Condition:
        self.catalog.lookup(type_key)
        value = self.catalog.resolve_value(type_key, raw_value)
        serialized = self.catalog.encode_value(type_key, value)
        async with self.store.transaction() as tx:
            rule = await self._require_rule(tx, rule_id)
            condition = await tx.create_condition(rule.id, type_key, serialized)
        logger.info(f"Added {type_key} condition #{condition.id} to rule #{rule.id}")
        return condition

    async def update_condition(self, condition_id, raw_value, type_key: Optional[str] = None, rule_id=None) -> Condition:
        async with self.store.transaction() as tx:
            condition = await self._require_condition(tx, condition_id, rule_id)
            if type_key is None or self.catalog.family_key(type_key) == self.catalog.family_key(condition.type_key):
                type_key = condition.type_key
            value = self.catalog.resolve_value(type_key, raw_value)
            serialized = self.catalog.encode_value(type_key, value)
            condition = await tx.update_condition(condition.id, type_key, serialized)
        logger.info(f"Updated condition #{condition.id} of rule #{condition.rule_id}")
        return condition

    async def remove_condition(self, condition_id, rule_id=None) -> Condition:
        async with self.store.transaction() as tx:
            condition = await self._require_condition(tx, condition_id, rule_id)
            await tx.delete_condition(condition.id)
        logger.info(f"Removed condition #{condition.id} from rule #{condition.rule_id}")
        return condition

    # ===== queries =====

    async def get_rule(self, rule_id) -> Rule:
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            logger.warning(f"Rule #{rule_id} not found")
            raise NotFound("rule", rule_id)
        return rule

    async def list_rules(self, owner_id) -> List[Rule]:
        return await self.store.list_rules_by_owner(owner_id)

    async def get_conditions(self, rule_id) -> List[Condition]:
        await self.get_rule(rule_id)
        return await self.store.get_conditions(rule_id)

    async def get_condition(self, condition_id, rule_id=None) -> Condition:
        condition = await self.store.get_condition_by_id(condition_id)
        if condition is None or (rule_id is not None and condition.rule_id != int(rule_id)):
            logger.warning(f"Condition #{condition_id} not found")
            raise NotFound("condition", condition_id)
        return condition

    async def get_owner_settings(self, owner_id) -> OwnerSettings:
        return await self.store.get_owner_settings(owner_id)

    async def owner_stats(self, owner_id) -> RulesStats:
        rules = await self.store.list_rules_by_owner(owner_id)
        rated = [rule.success_rate for rule in rules if rule.trade_count]
        top_rules = sorted(rules, key=lambda rule: rule.total_profit, reverse=True)[:3]
        return RulesStats(
            total=len(rules),
            active=sum(1 for rule in rules if rule.active),
            total_trades=sum(rule.trade_count for rule in rules),
            total_profit=sum(rule.total_profit for rule in rules),
            avg_success_rate=sum(rated) / len(rated) if rated else 0.0,
            top_rules=[(rule.name, rule.total_profit) for rule in top_rules],
        )

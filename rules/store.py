"""
Rule persistence.

`RuleStore` is the async unit-of-work interface the lifecycle manager talks
to. `JsonRuleStore` keeps everything in one JSON document: a transaction
works on a deep copy of the state and the copy replaces the live state only
after it was written to disk, so a failed block leaves no trace.
"""
import asyncio
import copy
import json
import os
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional
from config import RULES_DB_PATH
from utils import get_logger
from .errors import NotFound, StoreError
from .models import Condition, OwnerSettings, Rule, utc_now

logger = get_logger("STORE")


def _empty_state() -> dict:
    return {
        "next_ids": {"rule": 1, "condition": 1},
        "rules": {},
        "conditions": {},
        "owner_settings": {},
    }


def _key(entity_id) -> str:
    return str(int(entity_id))


class RuleStore(ABC):
    @abstractmethod
    def transaction(self) -> "AsyncIterator[RuleStore]":
        """Async context manager yielding a store view whose writes commit together."""

    @abstractmethod
    async def get_rule(self, rule_id) -> Optional[Rule]: ...

    @abstractmethod
    async def list_rules_by_owner(self, owner_id) -> List[Rule]: ...

    @abstractmethod
    async def create_rule(self, owner_id, fields: dict) -> Rule: ...

    @abstractmethod
    async def update_rule(self, rule_id, fields: dict) -> Rule: ...

    @abstractmethod
    async def delete_rule(self, rule_id) -> bool: ...

    @abstractmethod
    async def get_conditions(self, rule_id) -> List[Condition]: ...

    @abstractmethod
    async def get_condition_by_id(self, condition_id) -> Optional[Condition]: ...

    @abstractmethod
    async def create_condition(self, rule_id, type_key: str, value: str, secondary_value: Optional[str] = None) -> Condition: ...

    @abstractmethod
    async def update_condition(self, condition_id, type_key: str, value: str) -> Condition: ...

    @abstractmethod
    async def delete_condition(self, condition_id) -> bool: ...

    @abstractmethod
    async def get_owner_settings(self, owner_id) -> OwnerSettings: ...

    @abstractmethod
    async def update_owner_settings(self, owner_id, fields: dict) -> OwnerSettings: ...


class JsonRuleSession(RuleStore):
    """Store operations over one state document. Used inside a transaction."""

    def __init__(self, state: dict):
        self.state = state

    @asynccontextmanager
    async def transaction(self):
        yield self

    def _next_id(self, kind: str) -> int:
        next_id = self.state["next_ids"][kind]
        self.state["next_ids"][kind] = next_id + 1
        return next_id

    async def get_rule(self, rule_id) -> Optional[Rule]:
        data = self.state["rules"].get(_key(rule_id))
        return Rule.from_dict(data) if data else None

    async def list_rules_by_owner(self, owner_id) -> List[Rule]:
        owner_id = str(owner_id)
        rules = [Rule.from_dict(data) for data in self.state["rules"].values() if data["owner_id"] == owner_id]
        return sorted(rules, key=lambda rule: rule.id)

    async def create_rule(self, owner_id, fields: dict) -> Rule:
        rule = Rule(id=self._next_id("rule"), owner_id=str(owner_id), **fields)
        self.state["rules"][_key(rule.id)] = rule.to_dict()
        return rule

    async def update_rule(self, rule_id, fields: dict) -> Rule:
        data = self.state["rules"].get(_key(rule_id))
        if data is None:
            raise NotFound("rule", rule_id)
        rule = Rule.from_dict({**data, **fields, "updated_at": utc_now()})
        self.state["rules"][_key(rule_id)] = rule.to_dict()
        return rule

    async def delete_rule(self, rule_id) -> bool:
        if self.state["rules"].pop(_key(rule_id), None) is None:
            return False
        rule_id = int(rule_id)
        conditions = self.state["conditions"]
        for condition_key in [key for key, data in conditions.items() if data["rule_id"] == rule_id]:
            del conditions[condition_key]
        return True

    async def get_conditions(self, rule_id) -> List[Condition]:
        rule_id = int(rule_id)
        conditions = [
            Condition.from_dict(data) for data in self.state["conditions"].values() if data["rule_id"] == rule_id
        ]
        return sorted(conditions, key=lambda condition: condition.id)

    async def get_condition_by_id(self, condition_id) -> Optional[Condition]:
        data = self.state["conditions"].get(_key(condition_id))
        return Condition.from_dict(data) if data else None

    async def create_condition(self, rule_id, type_key: str, value: str, secondary_value: Optional[str] = None) -> Condition:
        if _key(rule_id) not in self.state["rules"]:
            raise NotFound("rule", rule_id)
        condition = Condition(
            id=self._next_id("condition"),
            rule_id=int(rule_id),
            type_key=type_key,
            value=value,
            secondary_value=secondary_value,
        )
        self.state["conditions"][_key(condition.id)] = condition.to_dict()
        return condition

    async def update_condition(self, condition_id, type_key: str, value: str) -> Condition:
        data = self.state["conditions"].get(_key(condition_id))
        if data is None:
            raise NotFound("condition", condition_id)
        data.update(type_key=type_key, value=value)
        return Condition.from_dict(data)

    async def delete_condition(self, condition_id) -> bool:
        return self.state["conditions"].pop(_key(condition_id), None) is not None

    async def get_owner_settings(self, owner_id) -> OwnerSettings:
        data = self.state["owner_settings"].get(str(owner_id))
        if data is None:
            return OwnerSettings(owner_id=str(owner_id))
        return OwnerSettings.from_dict(data)

    async def update_owner_settings(self, owner_id, fields: dict) -> OwnerSettings:
        current = await self.get_owner_settings(owner_id)
        settings = OwnerSettings.from_dict({**current.to_dict(), **fields, "owner_id": str(owner_id)})
        self.state["owner_settings"][str(owner_id)] = settings.to_dict()
        return settings


class JsonRuleStore(RuleStore):
    """JSON file backed store. `path=None` keeps the state in memory only."""

    def __init__(self, path: Optional[str] = RULES_DB_PATH):
        self.path = path
        self._lock = asyncio.Lock()
        self._state = self._load()

    def _load(self) -> dict:
        if not self.path:
            return _empty_state()
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                state = json.load(f)
        except FileNotFoundError:
            logger.info(f"No rules database at {self.path}, starting empty")
            return _empty_state()
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load rules database {self.path}: {e}")
            raise StoreError(f"Failed to load {self.path}: {e}") from e

        for section, default in _empty_state().items():
            state.setdefault(section, default)
        logger.info(f"Loaded {len(state['rules'])} rules from {self.path}")
        return state

    def _write(self, state: dict):
        if not self.path:
            return
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(state, f, indent=4)
        os.replace(tmp_path, self.path)

    @asynccontextmanager
    async def transaction(self):
        async with self._lock:
            working = copy.deepcopy(self._state)
            yield JsonRuleSession(working)
            try:
                self._write(working)
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"Failed to save rules database: {e}")
                raise StoreError(f"Failed to save rules database: {e}") from e
            self._state = working

    async def _read(self, name: str, *args):
        async with self._lock:
            return await getattr(JsonRuleSession(self._state), name)(*args)

    async def _mutate(self, name: str, *args):
        async with self.transaction() as session:
            return await getattr(session, name)(*args)

    async def get_rule(self, rule_id) -> Optional[Rule]:
        return await self._read("get_rule", rule_id)

    async def list_rules_by_owner(self, owner_id) -> List[Rule]:
        return await self._read("list_rules_by_owner", owner_id)

    async def create_rule(self, owner_id, fields: dict) -> Rule:
        return await self._mutate("create_rule", owner_id, fields)

    async def update_rule(self, rule_id, fields: dict) -> Rule:
        return await self._mutate("update_rule", rule_id, fields)

    async def delete_rule(self, rule_id) -> bool:
        return await self._mutate("delete_rule", rule_id)

    async def get_conditions(self, rule_id) -> List[Condition]:
        return await self._read("get_conditions", rule_id)

    async def get_condition_by_id(self, condition_id) -> Optional[Condition]:
        return await self._read("get_condition_by_id", condition_id)

    async def create_condition(self, rule_id, type_key: str, value: str, secondary_value: Optional[str] = None) -> Condition:
        return await self._mutate("create_condition", rule_id, type_key, value, secondary_value)

    async def update_condition(self, condition_id, type_key: str, value: str) -> Condition:
        return await self._mutate("update_condition", condition_id, type_key, value)

    async def delete_condition(self, condition_id) -> bool:
        return await self._mutate("delete_condition", condition_id)

    async def get_owner_settings(self, owner_id) -> OwnerSettings:
        return await self._read("get_owner_settings", owner_id)

    async def update_owner_settings(self, owner_id, fields: dict) -> OwnerSettings:
        return await self._mutate("update_owner_settings", owner_id, fields)

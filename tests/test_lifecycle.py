import asyncio
import json

import pytest

from rules import (
    JsonRuleStore,
    NotFound,
    RuleLifecycleManager,
    RuleType,
    StoreError,
    ValidationError,
)
from rules.store import JsonRuleSession

OWNER = "1001"
OTHER_OWNER = "2002"


async def _active_names(lifecycle: RuleLifecycleManager, owner_id: str = OWNER) -> list:
    return [rule.name for rule in await lifecycle.list_rules(owner_id) if rule.active]


@pytest.mark.asyncio
async def test_create_rule_is_inactive_and_trimmed(lifecycle: RuleLifecycleManager) -> None:
    rule = await lifecycle.create_rule(OWNER, "  Breakout  ", RuleType.STRATEGY)

    assert rule.name == "Breakout"
    assert rule.type == RuleType.STRATEGY
    assert rule.active is False
    assert rule.owner_id == OWNER


@pytest.mark.asyncio
async def test_create_rule_rejects_bad_input(lifecycle: RuleLifecycleManager) -> None:
    with pytest.raises(ValidationError):
        await lifecycle.create_rule(OWNER, "ab")
    with pytest.raises(ValidationError):
        await lifecycle.create_rule(OWNER, "Valid name", "hodl")
    assert await lifecycle.list_rules(OWNER) == []


@pytest.mark.asyncio
async def test_activate_deactivates_siblings(lifecycle: RuleLifecycleManager) -> None:
    a = await lifecycle.create_rule(OWNER, "Rule A")
    b = await lifecycle.create_rule(OWNER, "Rule B")
    c = await lifecycle.create_rule(OWNER, "Rule C")
    other = await lifecycle.create_rule(OTHER_OWNER, "Other owner rule")
    await lifecycle.activate(a.id)
    await lifecycle.activate(other.id)

    await lifecycle.activate(c.id)

    rules = {rule.name: rule.active for rule in await lifecycle.list_rules(OWNER)}
    assert rules == {"Rule A": False, "Rule B": False, "Rule C": True}
    assert (await lifecycle.get_rule(b.id)).active is False
    # exclusivity is scoped to the owner
    assert (await lifecycle.get_rule(other.id)).active is True


@pytest.mark.asyncio
async def test_activate_is_atomic_for_concurrent_readers(store: JsonRuleStore, lifecycle: RuleLifecycleManager, monkeypatch) -> None:
    a = await lifecycle.create_rule(OWNER, "Rule A")
    await lifecycle.create_rule(OWNER, "Rule B")
    c = await lifecycle.create_rule(OWNER, "Rule C")
    await lifecycle.activate(a.id)

    original_update = JsonRuleSession.update_rule

    async def slow_update(self, rule_id, fields):
        # yield to the reader between sibling deactivation and target activation
        await asyncio.sleep(0)
        return await original_update(self, rule_id, fields)

    monkeypatch.setattr(JsonRuleSession, "update_rule", slow_update)

    observed = []
    done = asyncio.Event()

    async def reader():
        while not done.is_set():
            rules = await store.list_rules_by_owner(OWNER)
            observed.append(sum(1 for rule in rules if rule.active))
            await asyncio.sleep(0)

    reader_task = asyncio.create_task(reader())
    await asyncio.sleep(0)
    await lifecycle.activate(c.id)
    done.set()
    await reader_task

    assert observed
    assert set(observed) == {1}
    assert await _active_names(lifecycle) == ["Rule C"]


@pytest.mark.asyncio
async def test_toggle_switches_state(lifecycle: RuleLifecycleManager) -> None:
    rule = await lifecycle.create_rule(OWNER, "Toggle me")

    assert (await lifecycle.toggle(rule.id)).active is True
    assert (await lifecycle.toggle(rule.id)).active is False


@pytest.mark.asyncio
async def test_deactivating_last_autonomous_rule_disables_autonomous_mode(lifecycle: RuleLifecycleManager) -> None:
    auto = await lifecycle.create_rule(OWNER, "Auto", RuleType.AUTONOMOUS_STRATEGY)
    await lifecycle.activate(auto.id)
    await lifecycle.set_autonomous_mode(OWNER, True)

    await lifecycle.deactivate(auto.id)

    assert (await lifecycle.get_owner_settings(OWNER)).autonomous_enabled is False


@pytest.mark.asyncio
async def test_deactivating_non_last_autonomous_rule_keeps_autonomous_mode(store: JsonRuleStore, lifecycle: RuleLifecycleManager) -> None:
    # a second active autonomous rule can only exist in data written by older versions
    auto_1 = await lifecycle.create_rule(OWNER, "Auto one", RuleType.AUTONOMOUS_STRATEGY)
    auto_2 = await lifecycle.create_rule(OWNER, "Auto two", RuleType.AUTONOMOUS_STRATEGY)
    await store.update_rule(auto_1.id, {"active": True})
    await store.update_rule(auto_2.id, {"active": True})
    await store.update_owner_settings(OWNER, {"autonomous_enabled": True})

    await lifecycle.deactivate(auto_1.id)

    assert (await lifecycle.get_owner_settings(OWNER)).autonomous_enabled is True

    await lifecycle.deactivate(auto_2.id)

    assert (await lifecycle.get_owner_settings(OWNER)).autonomous_enabled is False


@pytest.mark.asyncio
async def test_activating_other_rule_cascades_autonomous_mode(lifecycle: RuleLifecycleManager) -> None:
    auto = await lifecycle.create_rule(OWNER, "Auto", RuleType.AUTONOMOUS_STRATEGY)
    manual = await lifecycle.create_rule(OWNER, "Manual", RuleType.MANUAL)
    await lifecycle.activate(auto.id)
    await lifecycle.set_autonomous_mode(OWNER, True)

    await lifecycle.activate(manual.id)

    assert (await lifecycle.get_owner_settings(OWNER)).autonomous_enabled is False


@pytest.mark.asyncio
async def test_enabling_autonomous_mode_requires_active_autonomous_rule(lifecycle: RuleLifecycleManager) -> None:
    rule = await lifecycle.create_rule(OWNER, "Plain filter")
    await lifecycle.activate(rule.id)

    with pytest.raises(ValidationError):
        await lifecycle.set_autonomous_mode(OWNER, True)
    assert (await lifecycle.get_owner_settings(OWNER)).autonomous_enabled is False


@pytest.mark.asyncio
async def test_delete_removes_conditions_and_cascades(store: JsonRuleStore, lifecycle: RuleLifecycleManager) -> None:
    auto = await lifecycle.create_rule(OWNER, "Auto", RuleType.AUTONOMOUS_STRATEGY)
    condition = await lifecycle.add_condition(auto.id, "take_profit", "50")
    await lifecycle.activate(auto.id)
    await lifecycle.set_autonomous_mode(OWNER, True)

    await lifecycle.delete(auto.id)

    assert await store.get_rule(auto.id) is None
    assert await store.get_condition_by_id(condition.id) is None
    assert (await lifecycle.get_owner_settings(OWNER)).autonomous_enabled is False
    with pytest.raises(NotFound):
        await lifecycle.delete(auto.id)


@pytest.mark.asyncio
async def test_delete_all_always_clears_rules_and_autonomous_mode(store: JsonRuleStore, lifecycle: RuleLifecycleManager) -> None:
    assert await lifecycle.delete_all(OWNER) == 0
    assert (await lifecycle.get_owner_settings(OWNER)).autonomous_enabled is False

    auto = await lifecycle.create_rule(OWNER, "Auto", RuleType.AUTONOMOUS_STRATEGY)
    await lifecycle.create_rule(OWNER, "Second")
    await lifecycle.add_condition(auto.id, "market_cap", "micro")
    await lifecycle.activate(auto.id)
    await lifecycle.set_autonomous_mode(OWNER, True)
    kept = await lifecycle.create_rule(OTHER_OWNER, "Kept")

    assert await lifecycle.delete_all(OWNER) == 2

    assert await lifecycle.list_rules(OWNER) == []
    assert (await lifecycle.get_owner_settings(OWNER)).autonomous_enabled is False
    assert await store.get_conditions(auto.id) == []
    assert (await lifecycle.get_rule(kept.id)).name == "Kept"


@pytest.mark.asyncio
async def test_deactivate_all(lifecycle: RuleLifecycleManager) -> None:
    rule = await lifecycle.create_rule(OWNER, "Only rule")
    await lifecycle.activate(rule.id)

    assert await lifecycle.deactivate_all(OWNER) == 1
    assert await _active_names(lifecycle) == []


@pytest.mark.asyncio
async def test_deactivate_all_disables_autonomous_mode(lifecycle: RuleLifecycleManager) -> None:
    rule = await lifecycle.create_rule(OWNER, "Auto", RuleType.AUTONOMOUS_STRATEGY)
    await lifecycle.activate(rule.id)
    await lifecycle.set_autonomous_mode(OWNER, True)
    assert (await lifecycle.get_owner_settings(OWNER)).autonomous_enabled is True

    assert await lifecycle.deactivate_all(OWNER) == 1

    assert await _active_names(lifecycle) == []
    assert (await lifecycle.get_owner_settings(OWNER)).autonomous_enabled is False


@pytest.mark.asyncio
@pytest.mark.parametrize("length, valid", [(2, False), (3, True), (50, True), (51, False)])
async def test_rename_length_bounds(lifecycle: RuleLifecycleManager, length: int, valid: bool) -> None:
    rule = await lifecycle.create_rule(OWNER, "Original")
    new_name = "x" * length

    if valid:
        assert (await lifecycle.rename(rule.id, new_name)).name == new_name
    else:
        with pytest.raises(ValidationError):
            await lifecycle.rename(rule.id, new_name)
        assert (await lifecycle.get_rule(rule.id)).name == "Original"


@pytest.mark.asyncio
async def test_rename_trims_before_checking(lifecycle: RuleLifecycleManager) -> None:
    rule = await lifecycle.create_rule(OWNER, "Original")

    with pytest.raises(ValidationError):
        await lifecycle.rename(rule.id, "  ab  ")
    assert (await lifecycle.rename(rule.id, "  abc  ")).name == "abc"


@pytest.mark.asyncio
async def test_momentum_buy_scenario(catalog, lifecycle: RuleLifecycleManager) -> None:
    rule = await lifecycle.create_rule(OWNER, "Momentum Buy", RuleType.FILTER)
    assert await lifecycle.get_conditions(rule.id) == []

    condition = await lifecycle.add_condition(rule.id, "market_cap", "small")
    assert catalog.decode_value("market_cap", condition.value) == {"min": 1_000_000, "max": 10_000_000}

    await lifecycle.activate(rule.id)

    rules = await lifecycle.list_rules(OWNER)
    assert [r.name for r in rules if r.active] == ["Momentum Buy"]
    assert len(await lifecycle.get_conditions(rule.id)) == 1


@pytest.mark.asyncio
async def test_add_condition_validates_before_persisting(lifecycle: RuleLifecycleManager) -> None:
    rule = await lifecycle.create_rule(OWNER, "Exits")

    with pytest.raises(ValidationError):
        await lifecycle.add_condition(rule.id, "take_profit", "0")
    with pytest.raises(ValidationError):
        await lifecycle.add_condition(rule.id, "take_profit", "1001")
    with pytest.raises(NotFound):
        await lifecycle.add_condition(rule.id, "moon_factor", "1")
    with pytest.raises(NotFound):
        await lifecycle.add_condition(999, "take_profit", "10")
    assert await lifecycle.get_conditions(rule.id) == []

    low = await lifecycle.add_condition(rule.id, "take_profit", "1")
    high = await lifecycle.add_condition(rule.id, "manual_take_profit", "1000")
    assert json.loads(low.value) == {"percentage": 1, "action": "sell"}
    assert high.type_key == "manual_take_profit"


@pytest.mark.asyncio
async def test_update_condition_keeps_qualified_key(lifecycle: RuleLifecycleManager) -> None:
    rule = await lifecycle.create_rule(OWNER, "Exits")
    condition = await lifecycle.add_condition(rule.id, "management_stop_loss", "10")

    updated = await lifecycle.update_condition(condition.id, "25", type_key="stop_loss", rule_id=rule.id)

    assert updated.type_key == "management_stop_loss"
    assert json.loads(updated.value) == {"percentage": 25, "action": "sell"}

    with pytest.raises(ValidationError):
        await lifecycle.update_condition(condition.id, "91")
    with pytest.raises(NotFound):
        await lifecycle.update_condition(condition.id, "20", rule_id=rule.id + 1)


@pytest.mark.asyncio
async def test_remove_condition_leaves_rule_state(lifecycle: RuleLifecycleManager) -> None:
    rule = await lifecycle.create_rule(OWNER, "Watcher")
    condition = await lifecycle.add_condition(rule.id, "holders", "500")
    await lifecycle.activate(rule.id)

    removed = await lifecycle.remove_condition(condition.id, rule_id=rule.id)

    assert removed.id == condition.id
    assert await lifecycle.get_conditions(rule.id) == []
    assert (await lifecycle.get_rule(rule.id)).active is True
    with pytest.raises(NotFound):
        await lifecycle.remove_condition(condition.id)


@pytest.mark.asyncio
async def test_store_failure_keeps_previous_state(store: JsonRuleStore, lifecycle: RuleLifecycleManager, monkeypatch) -> None:
    a = await lifecycle.create_rule(OWNER, "Rule A")
    b = await lifecycle.create_rule(OWNER, "Rule B")
    await lifecycle.activate(a.id)

    def broken_write(state):
        raise OSError("disk full")

    monkeypatch.setattr(store, "_write", broken_write)

    with pytest.raises(StoreError):
        await lifecycle.activate(b.id)
    with pytest.raises(StoreError):
        await lifecycle.delete_all(OWNER)

    assert await _active_names(lifecycle) == ["Rule A"]
    assert len(await lifecycle.list_rules(OWNER)) == 2


@pytest.mark.asyncio
async def test_owner_stats(store: JsonRuleStore, lifecycle: RuleLifecycleManager) -> None:
    winner = await lifecycle.create_rule(OWNER, "Winner")
    loser = await lifecycle.create_rule(OWNER, "Loser")
    await lifecycle.create_rule(OWNER, "Idle")
    await store.update_rule(winner.id, {"trade_count": 4, "success_count": 3, "failure_count": 1, "total_profit": 120.0})
    await store.update_rule(loser.id, {"trade_count": 2, "success_count": 0, "failure_count": 2, "total_profit": -30.0})
    await lifecycle.activate(winner.id)

    stats = await lifecycle.owner_stats(OWNER)

    assert stats.total == 3
    assert stats.active == 1
    assert stats.inactive == 2
    assert stats.total_trades == 6
    assert stats.total_profit == 90.0
    assert stats.avg_success_rate == pytest.approx(37.5)
    assert stats.top_rules[0] == ("Winner", 120.0)
    assert stats.top_rules[-1] == ("Loser", -30.0)

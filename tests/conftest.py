import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from rules import (
    CallbackCodec,
    ConditionCatalog,
    ConditionValueFormatter,
    JsonRuleStore,
    RuleLifecycleManager,
)
from tg_client import RuleMenus


@pytest.fixture
def catalog() -> ConditionCatalog:
    return ConditionCatalog()


@pytest.fixture
def codec(catalog) -> CallbackCodec:
    return CallbackCodec(catalog)


@pytest.fixture
def formatter(catalog) -> ConditionValueFormatter:
    return ConditionValueFormatter(catalog)


@pytest.fixture
def store() -> JsonRuleStore:
    return JsonRuleStore(path=None)


@pytest.fixture
def lifecycle(store, catalog) -> RuleLifecycleManager:
    return RuleLifecycleManager(store, catalog)


@pytest.fixture
def menus(lifecycle, catalog, codec, formatter) -> RuleMenus:
    return RuleMenus(lifecycle, catalog, codec, formatter, per_page=3)

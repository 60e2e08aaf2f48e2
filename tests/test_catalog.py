import math

import pytest

from rules import ConditionCatalog, NotFound, ValidationError, ValueShape
from rules.catalog import DISCOVERY, MANAGEMENT, MANUAL


def test_lookup_unknown_type_raises_not_found(catalog: ConditionCatalog) -> None:
    with pytest.raises(NotFound):
        catalog.lookup("market_cap_v2")
    assert "market_cap_v2" not in catalog


def test_category_aliases_resolve_to_family(catalog: ConditionCatalog) -> None:
    assert catalog.lookup("discovery_market_cap") is catalog.lookup("market_cap")
    assert catalog.lookup("management_take_profit") is catalog.lookup("take_profit")
    assert catalog.lookup("manual_take_profit") is catalog.lookup("take_profit")
    assert catalog.family_key("manual_stop_loss") == "stop_loss"

    # only the percentage families have a manual alias
    with pytest.raises(NotFound):
        catalog.lookup("manual_market_cap")


def test_schemas_by_category(catalog: ConditionCatalog) -> None:
    discovery = [schema.type_key for schema in catalog.schemas(DISCOVERY)]
    management = [schema.type_key for schema in catalog.schemas(MANAGEMENT)]
    manual = [schema.type_key for schema in catalog.schemas(MANUAL)]

    assert discovery[0] == "market_cap"
    assert len(discovery) == 13
    assert management == ["take_profit", "stop_loss", "trailing_stop", "momentum", "volatility"]
    assert manual == ["take_profit", "stop_loss", "trailing_stop"]


def test_by_verb_maps_mcap_to_market_cap(catalog: ConditionCatalog) -> None:
    assert catalog.by_verb("mcap").type_key == "market_cap"
    assert "take_profit" in catalog.verbs()
    with pytest.raises(NotFound):
        catalog.by_verb("market_cap")


def test_presets_keep_declared_order(catalog: ConditionCatalog) -> None:
    labels = [label for label, _ in catalog.presets_for("price")]
    assert labels == ["ultra_low", "very_low", "low", "medium", "high", "very_high"]

    assert catalog.presets_for("market_cap")[1] == ("small", {"min": 1_000_000, "max": 10_000_000})
    assert catalog.presets_for("take_profit")[1] == ("25", {"percentage": 25, "action": "sell"})
    assert catalog.presets_for("trailing_stop")[0] == ("5", {"percentage": 5, "action": "trail"})


def test_presets_are_copies(catalog: ConditionCatalog) -> None:
    _, value = catalog.presets_for("market_cap")[0]
    value["max"] = 1

    assert catalog.presets_for("market_cap")[0][1] == {"min": 0, "max": 1_000_000}


@pytest.mark.parametrize("raw", ["1", "1000", "250", " 42 ", "12.5"])
def test_take_profit_custom_value_within_bounds(catalog: ConditionCatalog, raw: str) -> None:
    value = catalog.validate_custom_value("take_profit", raw)
    assert value["action"] == "sell"
    assert value["percentage"] == float(raw)


@pytest.mark.parametrize("raw", ["0", "1001", "-5", "abc", "", "nan", "inf"])
def test_take_profit_custom_value_out_of_bounds(catalog: ConditionCatalog, raw: str) -> None:
    with pytest.raises(ValidationError) as exc_info:
        catalog.validate_custom_value("take_profit", raw)
    assert exc_info.value.type_key == "take_profit"
    assert exc_info.value.bound == (1, 1000)


def test_custom_bounds_per_family(catalog: ConditionCatalog) -> None:
    assert catalog.validate_custom_value("stop_loss", "90") == {"percentage": 90, "action": "sell"}
    assert catalog.validate_custom_value("trailing_stop", "50") == {"percentage": 50, "action": "trail"}
    assert catalog.validate_custom_value("num_buys", "10000") == {"min": 10000}

    with pytest.raises(ValidationError):
        catalog.validate_custom_value("stop_loss", "91")
    with pytest.raises(ValidationError):
        catalog.validate_custom_value("trailing_stop", "51")
    with pytest.raises(ValidationError):
        catalog.validate_custom_value("num_sells", "2.5")


def test_custom_value_rejected_for_preset_only_types(catalog: ConditionCatalog) -> None:
    with pytest.raises(ValidationError):
        catalog.validate_custom_value("market_cap", "100")


def test_resolve_value_prefers_presets(catalog: ConditionCatalog) -> None:
    assert catalog.resolve_value("market_cap", "small") == {"min": 1_000_000, "max": 10_000_000}
    assert catalog.resolve_value("management_take_profit", "25") == {"percentage": 25, "action": "sell"}
    assert catalog.resolve_value("take_profit", "33") == {"percentage": 33, "action": "sell"}
    assert catalog.resolve_value("category", "defi") == "defi"

    with pytest.raises(ValidationError):
        catalog.resolve_value("category", "memes")


def test_value_codec_is_inverse_for_every_preset(catalog: ConditionCatalog) -> None:
    for schema in catalog:
        for label, value in catalog.presets_for(schema.type_key):
            serialized = catalog.encode_value(schema.type_key, value)
            assert isinstance(serialized, str)
            assert catalog.decode_value(schema.type_key, serialized) == value, (schema.type_key, label)


def test_unbounded_max_is_stored_as_null(catalog: ConditionCatalog) -> None:
    serialized = catalog.encode_value("market_cap", {"min": 100_000_000, "max": math.inf})
    assert serialized == '{"min":100000000,"max":null}'
    assert catalog.decode_value("market_cap", serialized)["max"] == math.inf


def test_enum_values_are_plain_strings(catalog: ConditionCatalog) -> None:
    assert catalog.lookup("category").shape == ValueShape.ENUM
    assert catalog.encode_value("category", "layer2") == "layer2"
    assert catalog.decode_value("timeframe", "24h") == "24h"


@pytest.mark.parametrize(
    "type_key, serialized",
    [
        ("market_cap", "not json"),
        ("market_cap", '{"min": 5}'),
        ("market_cap", '{"min": 10, "max": 1}'),
        ("take_profit", '{"percentage": "ten", "action": "sell"}'),
        ("take_profit", '{"percentage": 10, "action": "hold"}'),
        ("holders", '{"min": true}'),
        ("age", '{"hours": 1, "days": 2}'),
        ("age", '{"years": 1}'),
        ("momentum", '{"indicator": "rsi", "action": "buy"}'),
        ("category", "memes"),
        ("volume_spike", "[2]"),
    ],
)
def test_decode_value_rejects_malformed_input(catalog: ConditionCatalog, type_key: str, serialized: str) -> None:
    with pytest.raises(ValidationError):
        catalog.decode_value(type_key, serialized)

"""
Static registry of condition types: value shapes, presets, custom bounds and
the value codec used for persistence.
"""
import copy
import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from .errors import NotFound, ValidationError

INF = math.inf


class ValueShape(str, Enum):
    RANGE = "range"
    ENUM = "enum"
    THRESHOLD = "threshold"
    MULTIPLIER = "multiplier"
    COUNT = "count"
    DURATION = "duration"
    PERCENTAGE = "percentage"
    INDICATOR = "indicator"
    LEVEL = "level"
    PROFILE = "profile"


DISCOVERY = "discovery"
MANAGEMENT = "management"
MANUAL = "manual"


@dataclass(frozen=True)
class Preset:
    label: str
    value: Any
    title: str


@dataclass(frozen=True)
class ConditionTypeSchema:
    type_key: str
    verb: str
    category: str
    shape: ValueShape
    title: str
    presets: Tuple[Preset, ...]
    custom_bounds: Optional[Tuple[float, float]] = None
    template: Optional[str] = None
    action: Optional[str] = None
    compact: bool = True

    def preset(self, label: str) -> Optional[Preset]:
        for preset in self.presets:
            if preset.label == label:
                return preset
        return None


def _ranges(pairs) -> Tuple[Preset, ...]:
    return tuple(Preset(label, {"min": lo, "max": hi}, title) for label, lo, hi, title in pairs)


def _percentages(values, action: str) -> Tuple[Preset, ...]:
    return tuple(Preset(str(n), {"percentage": n, "action": action}, f"{n}%") for n in values)


def _counts(values, title: str) -> Tuple[Preset, ...]:
    return tuple(Preset(str(n), {"min": n}, f"{n}+ {title}") for n in values)


_SCHEMAS: Tuple[ConditionTypeSchema, ...] = (
    ConditionTypeSchema(
        type_key="market_cap", verb="mcap", category=DISCOVERY, shape=ValueShape.RANGE,
        title="Market Cap",
        presets=_ranges([
            ("micro", 0, 1_000_000, "Micro Cap (< $1M)"),
            ("small", 1_000_000, 10_000_000, "Small Cap ($1M - $10M)"),
            ("mid", 10_000_000, 100_000_000, "Mid Cap ($10M - $100M)"),
            ("large", 100_000_000, INF, "Large Cap (> $100M)"),
        ]),
    ),
    ConditionTypeSchema(
        type_key="price", verb="price", category=DISCOVERY, shape=ValueShape.RANGE,
        title="Price Range", compact=False,
        presets=_ranges([
            ("ultra_low", 0, 0.001, "Ultra Low (< $0.001)"),
            ("very_low", 0.001, 0.01, "Very Low ($0.001 - $0.01)"),
            ("low", 0.01, 0.1, "Low ($0.01 - $0.1)"),
            ("medium", 0.1, 1, "Medium ($0.1 - $1)"),
            ("high", 1, 10, "High ($1 - $10)"),
            ("very_high", 10, INF, "Very High (> $10)"),
        ]),
    ),
    ConditionTypeSchema(
        type_key="liquidity", verb="liquidity", category=DISCOVERY, shape=ValueShape.RANGE,
        title="Liquidity",
        presets=_ranges([
            ("very_low", 0, 10_000, "Very Low (< $10K)"),
            ("low", 10_000, 50_000, "Low ($10K - $50K)"),
            ("medium", 50_000, 200_000, "Medium ($50K - $200K)"),
            ("high", 200_000, 1_000_000, "High ($200K - $1M)"),
            ("very_high", 1_000_000, INF, "Very High (> $1M)"),
        ]),
    ),
    ConditionTypeSchema(
        type_key="volume", verb="volume", category=DISCOVERY, shape=ValueShape.RANGE,
        title="Volume",
        presets=_ranges([
            ("low", 0, 100_000, "Low (< $100K)"),
            ("medium", 100_000, 1_000_000, "Medium ($100K - $1M)"),
            ("high", 1_000_000, 10_000_000, "High ($1M - $10M)"),
            ("very_high", 10_000_000, INF, "Very High (> $10M)"),
        ]),
    ),
    ConditionTypeSchema(
        type_key="category", verb="category", category=DISCOVERY, shape=ValueShape.ENUM,
        title="Category",
        presets=tuple(Preset(label, label, title) for label, title in [
            ("gaming", "Gaming"),
            ("defi", "DeFi"),
            ("nft", "NFT"),
            ("layer1", "Layer 1"),
            ("layer2", "Layer 2"),
            ("dex", "DEX"),
            ("ai", "AI"),
            ("web3", "Web3"),
        ]),
    ),
    ConditionTypeSchema(
        type_key="timeframe", verb="timeframe", category=DISCOVERY, shape=ValueShape.ENUM,
        title="Timeframe",
        presets=tuple(Preset(label, label, title) for label, title in [
            ("1h", "1 Hour"),
            ("4h", "4 Hours"),
            ("24h", "24 Hours"),
            ("7d", "7 Days"),
            ("30d", "30 Days"),
        ]),
    ),
    ConditionTypeSchema(
        type_key="price_change", verb="price_change", category=DISCOVERY, shape=ValueShape.THRESHOLD,
        title="Price Change",
        template="+{threshold}% price change",
        presets=tuple(
            Preset(str(n), {"threshold": n, "operator": "gte"}, f"+{n}%") for n in (5, 10, 20, 50, 100)
        ),
    ),
    ConditionTypeSchema(
        type_key="volume_spike", verb="volume_spike", category=DISCOVERY, shape=ValueShape.MULTIPLIER,
        title="Volume Spike",
        template="{multiplier}x volume spike",
        presets=tuple(Preset(f"{n}x", {"multiplier": n}, f"{n}x Volume") for n in (2, 5, 10, 20, 50)),
    ),
    ConditionTypeSchema(
        type_key="holders", verb="holders", category=DISCOVERY, shape=ValueShape.COUNT,
        title="Holders",
        template="{min}+ holders",
        presets=_counts((100, 500, 1000, 5000, 10000), "holders"),
    ),
    ConditionTypeSchema(
        type_key="age", verb="age", category=DISCOVERY, shape=ValueShape.DURATION,
        title="Token Age",
        presets=(
            Preset("1h", {"hours": 1}, "1 Hour"),
            Preset("6h", {"hours": 6}, "6 Hours"),
            Preset("1d", {"days": 1}, "1 Day"),
            Preset("3d", {"days": 3}, "3 Days"),
            Preset("1w", {"weeks": 1}, "1 Week"),
            Preset("1m", {"months": 1}, "1 Month"),
        ),
    ),
    ConditionTypeSchema(
        type_key="num_buys", verb="num_buys", category=DISCOVERY, shape=ValueShape.COUNT,
        title="Number of Buys",
        template="{min}+ buys",
        custom_bounds=(1, 10000),
        presets=_counts((1, 5, 10, 20), "buys"),
    ),
    ConditionTypeSchema(
        type_key="num_sells", verb="num_sells", category=DISCOVERY, shape=ValueShape.COUNT,
        title="Number of Sells",
        template="{min}+ sells",
        custom_bounds=(1, 10000),
        presets=_counts((1, 5, 10, 20), "sells"),
    ),
    ConditionTypeSchema(
        type_key="copy_trade", verb="copy_trade", category=DISCOVERY, shape=ValueShape.PROFILE,
        title="Copy Trade",
        presets=(
            Preset("top_traders", {"type": "top_traders", "criteria": "performance"}, "Top Traders"),
            Preset("whales", {"type": "whale_wallets", "min_size": 100000}, "Whale Wallets"),
            Preset("smart_money", {"type": "smart_money", "criteria": "alpha"}, "Smart Money"),
            Preset("bots", {"type": "bot_wallets", "criteria": "automation"}, "Trading Bots"),
        ),
    ),
    ConditionTypeSchema(
        type_key="take_profit", verb="take_profit", category=MANAGEMENT, shape=ValueShape.PERCENTAGE,
        title="Take Profit",
        template="Take profit at +{percentage}%",
        action="sell",
        custom_bounds=(1, 1000),
        presets=_percentages((10, 25, 50, 100, 200, 500), "sell"),
    ),
    ConditionTypeSchema(
        type_key="stop_loss", verb="stop_loss", category=MANAGEMENT, shape=ValueShape.PERCENTAGE,
        title="Stop Loss",
        template="Stop loss at -{percentage}%",
        action="sell",
        custom_bounds=(1, 90),
        presets=_percentages((5, 10, 15, 20, 30, 50), "sell"),
    ),
    ConditionTypeSchema(
        type_key="trailing_stop", verb="trailing_stop", category=MANAGEMENT, shape=ValueShape.PERCENTAGE,
        title="Trailing Stop",
        template="Trailing stop at {percentage}%",
        action="trail",
        custom_bounds=(1, 50),
        presets=_percentages((5, 10, 15, 20, 25, 30), "trail"),
    ),
    ConditionTypeSchema(
        type_key="momentum", verb="momentum", category=MANAGEMENT, shape=ValueShape.INDICATOR,
        title="Momentum",
        presets=(
            Preset("rsi_oversold", {"indicator": "rsi", "threshold": 30, "action": "buy"}, "RSI Oversold"),
            Preset("rsi_overbought", {"indicator": "rsi", "threshold": 70, "action": "sell"}, "RSI Overbought"),
            Preset("macd_bull", {"indicator": "macd", "crossover": "bullish", "action": "buy"}, "MACD Bullish"),
            Preset("macd_bear", {"indicator": "macd", "crossover": "bearish", "action": "sell"}, "MACD Bearish"),
            Preset("price_above_ma", {"indicator": "moving_average", "position": "above", "action": "buy"}, "Price Above MA"),
            Preset("price_below_ma", {"indicator": "moving_average", "position": "below", "action": "sell"}, "Price Below MA"),
        ),
    ),
    ConditionTypeSchema(
        type_key="volatility", verb="volatility", category=MANAGEMENT, shape=ValueShape.LEVEL,
        title="Volatility",
        presets=(
            Preset("low", {"level": "low", "threshold": 0, "max": 5}, "Low (< 5%)"),
            Preset("medium", {"level": "medium", "threshold": 5, "max": 15}, "Medium (5% - 15%)"),
            Preset("high", {"level": "high", "threshold": 15, "max": 30}, "High (15% - 30%)"),
            Preset("extreme", {"level": "extreme", "threshold": 30, "max": INF}, "Extreme (> 30%)"),
        ),
    ),
)

# percentage families that are also offered under the manual trading menu
_MANUAL_FAMILIES = ("take_profit", "stop_loss", "trailing_stop")

# value keys per shape, used to validate decoded values
_SHAPE_KEYS = {
    ValueShape.RANGE: ("min", "max"),
    ValueShape.THRESHOLD: ("threshold", "operator"),
    ValueShape.MULTIPLIER: ("multiplier",),
    ValueShape.COUNT: ("min",),
    ValueShape.PERCENTAGE: ("percentage", "action"),
    ValueShape.LEVEL: ("level", "threshold", "max"),
}
_DURATION_UNITS = ("hours", "days", "weeks", "months")
_INDICATOR_ARGS = ("threshold", "crossover", "position")


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _normalize_number(number: float):
    if math.isfinite(number) and number == int(number):
        return int(number)
    return number


class ConditionCatalog:
    """Lookup table over every condition type schema.

    Family keys (`take_profit`) and category qualified aliases
    (`management_take_profit`, `manual_take_profit`, `discovery_market_cap`)
    resolve to the same schema.
    """

    def __init__(self, schemas: Tuple[ConditionTypeSchema, ...] = _SCHEMAS):
        self._schemas: Dict[str, ConditionTypeSchema] = {}
        self._aliases: Dict[str, str] = {}
        self._by_verb: Dict[str, ConditionTypeSchema] = {}
        for schema in schemas:
            self._schemas[schema.type_key] = schema
            self._by_verb[schema.verb] = schema
            self._aliases[schema.type_key] = schema.type_key
            self._aliases[f"{schema.category}_{schema.type_key}"] = schema.type_key
            if schema.type_key in _MANUAL_FAMILIES:
                self._aliases[f"{MANUAL}_{schema.type_key}"] = schema.type_key

    def __contains__(self, type_key) -> bool:
        return type_key in self._aliases

    def __iter__(self):
        return iter(self._schemas.values())

    def schemas(self, category: Optional[str] = None) -> List[ConditionTypeSchema]:
        if category is None:
            return list(self._schemas.values())
        if category == MANUAL:
            return [self._schemas[key] for key in _MANUAL_FAMILIES]
        return [schema for schema in self._schemas.values() if schema.category == category]

    def lookup(self, type_key: str) -> ConditionTypeSchema:
        family = self._aliases.get(type_key)
        if family is None:
            raise NotFound("condition type", type_key)
        return self._schemas[family]

    def family_key(self, type_key: str) -> str:
        return self.lookup(type_key).type_key

    def by_verb(self, verb: str) -> ConditionTypeSchema:
        schema = self._by_verb.get(verb)
        if schema is None:
            raise NotFound("condition verb", verb)
        return schema

    def verbs(self) -> List[str]:
        return list(self._by_verb)

    def presets_for(self, type_key: str) -> List[Tuple[str, Any]]:
        """Ordered (label, value) pairs. Values are copies, callers may mutate them."""
        schema = self.lookup(type_key)
        return [(preset.label, copy.deepcopy(preset.value)) for preset in schema.presets]

    def resolve_value(self, type_key: str, raw):
        """Map a preset label or a custom numeric input to a structured value."""
        schema = self.lookup(type_key)
        preset = schema.preset(str(raw).strip())
        if preset is not None:
            return copy.deepcopy(preset.value)
        return self.validate_custom_value(type_key, raw)

    def validate_custom_value(self, type_key: str, raw):
        schema = self.lookup(type_key)
        if schema.custom_bounds is None:
            raise ValidationError(
                f"{schema.title} does not accept custom values",
                type_key=schema.type_key,
            )
        lo, hi = schema.custom_bounds
        bound_message = f"{schema.title} must be a number between {lo} and {hi}"

        try:
            number = float(str(raw).strip())
        except ValueError:
            raise ValidationError(bound_message, type_key=schema.type_key, bound=(lo, hi))
        if not math.isfinite(number) or not lo <= number <= hi:
            raise ValidationError(bound_message, type_key=schema.type_key, bound=(lo, hi))

        number = _normalize_number(number)
        if schema.shape == ValueShape.COUNT:
            if not isinstance(number, int):
                raise ValidationError(
                    f"{schema.title} must be a whole number", type_key=schema.type_key, bound=(lo, hi)
                )
            return {"min": number}
        if schema.shape == ValueShape.PERCENTAGE:
            return {"percentage": number, "action": schema.action}
        raise ValidationError(f"{schema.title} does not accept custom values", type_key=schema.type_key)

    def encode_value(self, type_key: str, value) -> str:
        schema = self.lookup(type_key)
        self._check_value(schema, value)
        if schema.shape == ValueShape.ENUM:
            return value
        stored = dict(value)
        # unbounded upper limits are persisted as null
        if stored.get("max") == INF:
            stored["max"] = None
        return json.dumps(stored, separators=(",", ":"))

    def decode_value(self, type_key: str, serialized):
        schema = self.lookup(type_key)
        if schema.shape == ValueShape.ENUM:
            self._check_value(schema, serialized)
            return serialized
        try:
            value = json.loads(serialized)
        except (TypeError, ValueError):
            raise ValidationError(f"Malformed {schema.title} value: {serialized!r}", type_key=schema.type_key)
        if isinstance(value, dict) and "max" in value and value["max"] is None:
            value["max"] = INF
        self._check_value(schema, value)
        return value

    def _check_value(self, schema: ConditionTypeSchema, value):
        malformed = ValidationError(f"Malformed {schema.title} value: {value!r}", type_key=schema.type_key)

        if schema.shape == ValueShape.ENUM:
            if not isinstance(value, str) or schema.preset(value) is None:
                raise malformed
            return
        if not isinstance(value, dict):
            raise malformed

        if schema.shape == ValueShape.DURATION:
            if len(value) != 1:
                raise malformed
            (unit, amount), = value.items()
            if unit not in _DURATION_UNITS or not _is_number(amount):
                raise malformed
            return
        if schema.shape == ValueShape.INDICATOR:
            args = [key for key in _INDICATOR_ARGS if key in value]
            if not isinstance(value.get("indicator"), str) or "action" not in value or len(args) != 1:
                raise malformed
            return
        if schema.shape == ValueShape.PROFILE:
            if not isinstance(value.get("type"), str):
                raise malformed
            return

        keys = _SHAPE_KEYS[schema.shape]
        if set(value) != set(keys):
            raise malformed
        for key in keys:
            if key in ("operator", "action", "level"):
                if not isinstance(value[key], str):
                    raise malformed
            elif not _is_number(value[key]) or math.isnan(value[key]):
                raise malformed
        if schema.shape == ValueShape.RANGE and value["min"] > value["max"]:
            raise malformed
        if schema.shape == ValueShape.PERCENTAGE and value["action"] not in ("sell", "trail"):
            raise malformed

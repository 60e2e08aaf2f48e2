import math
from .catalog import ConditionCatalog, ConditionTypeSchema, ValueShape
from .errors import NotFound, ValidationError
from .models import Condition

UNBOUNDED = "∞"


def format_number(number) -> str:
    """Compact money amount: 1.5K, 10.0M, 2.0B."""
    if number == math.inf:
        return UNBOUNDED
    for divider, suffix in ((1_000_000_000, "B"), (1_000_000, "M"), (1_000, "K")):
        if number >= divider:
            return f"{number / divider:.1f}{suffix}"
    return f"{number:g}"


def format_price(number) -> str:
    if number == math.inf:
        return UNBOUNDED
    return f"{number:.4f}"


def _plural(amount, unit: str) -> str:
    return f"{amount:g} {unit}{'' if amount == 1 else 's'}"


class ConditionValueFormatter:
    """Display text for condition values. Never raises, bad data renders as-is."""

    def __init__(self, catalog: ConditionCatalog):
        self.catalog = catalog

    def format(self, type_key: str, value) -> str:
        try:
            schema = self.catalog.lookup(type_key)
        except NotFound:
            return str(value)

        if isinstance(value, str):
            try:
                value = self.catalog.decode_value(type_key, value)
            except ValidationError:
                return value

        try:
            return self._render(schema, value)
        except (AttributeError, KeyError, TypeError, ValueError):
            return str(value)

    def format_condition(self, condition: Condition) -> str:
        return self.format(condition.type_key, condition.value)

    def title(self, type_key: str) -> str:
        try:
            return self.catalog.lookup(type_key).title
        except NotFound:
            return type_key

    def _render(self, schema: ConditionTypeSchema, value) -> str:
        shape = schema.shape

        if shape == ValueShape.RANGE:
            fmt = format_number if schema.compact else format_price
            low, high = fmt(value["min"]), fmt(value["max"])
            if high != UNBOUNDED:
                high = f"${high}"
            return f"${low} – {high}"

        if shape == ValueShape.ENUM:
            preset = schema.preset(value)
            return preset.title if preset else str(value)

        if shape == ValueShape.DURATION:
            (unit, amount), = value.items()
            return _plural(amount, unit[:-1])

        if shape == ValueShape.INDICATOR:
            indicator = value["indicator"]
            if indicator == "rsi":
                side = "overbought" if value["threshold"] > 50 else "oversold"
                return f"RSI {side} ({value['threshold']})"
            if indicator == "macd":
                return f"MACD {value['crossover']} crossover"
            if indicator == "moving_average":
                return f"Price {value['position']} moving average"
            return f"{indicator} signal ({value['action']})"

        if shape == ValueShape.LEVEL:
            upper = UNBOUNDED if value["max"] == math.inf else f"{value['max']}%"
            return f"{value['level']} volatility ({value['threshold']}%–{upper})"

        if shape == ValueShape.PROFILE:
            for preset in schema.presets:
                if preset.value == value:
                    return preset.title
            return value["type"].replace("_", " ").title()

        return schema.template.format(**value)

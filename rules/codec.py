"""
Callback token codec.

A token is `[action verb...][payload...][ids...]` joined by the delimiter.
Action verbs, condition verbs and value labels all share the delimiter, so
decoding walks an explicit grammar table: entries are tried longest action
verb first, trailing id segments are stripped from the right and checked
against their slot pattern, and the payload left in between is classified
by greedy longest match against the catalog verbs.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple
from config import CALLBACK_DATA_LIMIT, CALLBACK_DELIMITER
from .catalog import ConditionCatalog
from .errors import NotFound, TokenTooLong, UnrecognizedAction
from .models import CallbackAction, RuleType


class Payload(str, Enum):
    NONE = "none"
    TYPE = "type"                      # <typeKey>, aliases allowed
    CONDITION = "condition"            # <condition verb><value label>
    CONDITION_VERB = "condition_verb"  # <condition verb> with custom input
    RULE_TYPE = "rule_type"


SLOT_PATTERNS = {
    "rule_id": re.compile(r"\d+", re.ASCII),
    "condition_id": re.compile(r"\d+", re.ASCII),
    "page": re.compile(r"\d+", re.ASCII),
    "address": re.compile(r"[1-9A-HJ-NP-Za-km-z]+", re.ASCII),  # base58
    "amount": re.compile(r"\d+(\.\d+)?", re.ASCII),
}


@dataclass(frozen=True)
class GrammarEntry:
    verb: str
    ids: Tuple[str, ...] = ()
    payload: Payload = Payload.NONE


GRAMMAR: Tuple[GrammarEntry, ...] = (
    # navigation
    GrammarEntry("rules"),
    GrammarEntry("rules_list"),
    GrammarEntry("rules_create"),
    GrammarEntry("rules_stats"),
    GrammarEntry("rules_page", ids=("page",)),
    GrammarEntry("action_menu"),
    GrammarEntry("action_cancel"),
    GrammarEntry("delete_rules_menu"),
    GrammarEntry("delete_all_rules"),
    GrammarEntry("confirm_delete_all_rules"),
    GrammarEntry("toggle_all_rules"),
    GrammarEntry("toggle_autonomous"),
    # creation
    GrammarEntry("rule_type", payload=Payload.RULE_TYPE),
    # per rule
    GrammarEntry("rule", ids=("rule_id",)),
    GrammarEntry("rule_toggle", ids=("rule_id",)),
    GrammarEntry("rule_stats", ids=("rule_id",)),
    GrammarEntry("rule_edit", ids=("rule_id",)),
    GrammarEntry("rule_edit_name", ids=("rule_id",)),
    GrammarEntry("rule_edit_conditions", ids=("rule_id",)),
    GrammarEntry("rule_edit_condition", ids=("rule_id",)),
    GrammarEntry("rule_add_condition", ids=("rule_id",)),
    GrammarEntry("rule_remove_condition", ids=("rule_id",)),
    GrammarEntry("rule_delete", ids=("rule_id",)),
    GrammarEntry("rule_delete_confirm", ids=("rule_id",)),
    # condition edits
    GrammarEntry("add_condition", ids=("rule_id",), payload=Payload.TYPE),
    GrammarEntry("set_condition", ids=("rule_id",), payload=Payload.CONDITION),
    GrammarEntry("update_condition", ids=("condition_id", "rule_id"), payload=Payload.CONDITION),
    GrammarEntry("edit_condition", ids=("condition_id", "rule_id")),
    GrammarEntry("remove_condition", ids=("condition_id", "rule_id")),
    GrammarEntry("custom", ids=("condition_id", "rule_id"), payload=Payload.CONDITION_VERB),
    # trading
    GrammarEntry("confirm_buy", ids=("address", "amount")),
)


class CallbackCodec:
    def __init__(
        self,
        catalog: ConditionCatalog,
        grammar: Tuple[GrammarEntry, ...] = GRAMMAR,
        limit: int = CALLBACK_DATA_LIMIT,
        delimiter: str = CALLBACK_DELIMITER,
    ):
        self.catalog = catalog
        self.limit = limit
        self.delimiter = delimiter
        self._entries: Dict[str, GrammarEntry] = {entry.verb: entry for entry in grammar}
        # longest action verb first so `rule_edit_name` wins over `rule_edit`
        self._ordered: List[Tuple[List[str], GrammarEntry]] = sorted(
            ((entry.verb.split(delimiter), entry) for entry in grammar),
            key=lambda item: len(item[0]),
            reverse=True,
        )
        self._condition_verbs: List[List[str]] = sorted(
            (verb.split(delimiter) for verb in catalog.verbs()),
            key=len,
            reverse=True,
        )

    @property
    def grammar(self) -> List[GrammarEntry]:
        return list(self._entries.values())

    def decode(self, token: str) -> CallbackAction:
        if not isinstance(token, str) or not token:
            raise UnrecognizedAction(token, "empty token")
        try:
            size = len(token.encode("utf-8"))
        except UnicodeEncodeError:
            raise UnrecognizedAction(token, "not valid UTF-8")
        if size > self.limit:
            raise UnrecognizedAction(token, f"over {self.limit} bytes")

        segments = token.split(self.delimiter)
        if "" in segments:
            raise UnrecognizedAction(token, "empty segment")

        for verb_segments, entry in self._ordered:
            size = len(verb_segments)
            if segments[:size] != verb_segments:
                continue
            rest = segments[size:]
            if len(rest) < len(entry.ids):
                continue
            split_at = len(rest) - len(entry.ids)
            payload, id_values = rest[:split_at], rest[split_at:]
            ids = dict(zip(entry.ids, id_values))
            if not all(SLOT_PATTERNS[slot].fullmatch(value) for slot, value in ids.items()):
                continue
            fields = self._parse_payload(entry.payload, payload)
            if fields is None:
                continue
            return CallbackAction(verb=entry.verb, **fields, **ids)

        raise UnrecognizedAction(token)

    def _parse_payload(self, kind: Payload, payload: List[str]) -> Optional[dict]:
        joined = self.delimiter.join(payload)
        if kind == Payload.NONE:
            return {} if not payload else None
        if not payload:
            return None

        if kind == Payload.TYPE:
            return {"type_key": joined} if joined in self.catalog else None

        if kind == Payload.RULE_TYPE:
            try:
                return {"rule_type": RuleType(joined).value}
            except ValueError:
                return None

        schema, value_segments = self._match_condition_verb(payload)
        if schema is None:
            return None
        if kind == Payload.CONDITION_VERB:
            if value_segments or schema.custom_bounds is None:
                return None
            return {"type_key": schema.type_key}
        if not value_segments:
            return None
        return {"type_key": schema.type_key, "value": self.delimiter.join(value_segments)}

    def _match_condition_verb(self, payload: List[str]):
        for verb_segments in self._condition_verbs:
            if payload[:len(verb_segments)] == verb_segments:
                schema = self.catalog.by_verb(self.delimiter.join(verb_segments))
                return schema, payload[len(verb_segments):]
        return None, []

    def encode(self, action: CallbackAction) -> str:
        entry = self._entries.get(action.verb)
        if entry is None:
            raise UnrecognizedAction(action, "no grammar entry")

        parts = [action.verb]
        try:
            if entry.payload == Payload.TYPE:
                parts.append(self._required(action, "type_key"))
            elif entry.payload == Payload.RULE_TYPE:
                parts.append(self._required(action, "rule_type"))
            elif entry.payload in (Payload.CONDITION, Payload.CONDITION_VERB):
                schema = self.catalog.lookup(self._required(action, "type_key"))
                parts.append(schema.verb)
                if entry.payload == Payload.CONDITION:
                    parts.append(self._required(action, "value"))
        except NotFound:
            raise UnrecognizedAction(action, f"unknown condition type {action.type_key!r}")
        for slot in entry.ids:
            parts.append(self._required(action, slot))

        token = self.delimiter.join(parts)
        try:
            size = len(token.encode("utf-8"))
        except UnicodeEncodeError:
            raise UnrecognizedAction(action, "not valid UTF-8")
        if size > self.limit:
            raise TokenTooLong(token, size, self.limit)
        if self.decode(token) != action:
            raise UnrecognizedAction(token, "does not decode back to the same action")
        return token

    @staticmethod
    def _required(action: CallbackAction, name: str) -> str:
        value = getattr(action, name)
        if value is None or value == "":
            raise UnrecognizedAction(action, f"missing {name}")
        return value

from .errors import RulesError, ValidationError, UnrecognizedAction, TokenTooLong, NotFound, StoreError
from .models import Rule, RuleType, Condition, OwnerSettings, RulesStats, CallbackAction
from .catalog import ConditionCatalog, ConditionTypeSchema, ValueShape, Preset
from .codec import CallbackCodec
from .formatter import ConditionValueFormatter
from .store import RuleStore, JsonRuleStore
from .lifecycle import RuleLifecycleManager

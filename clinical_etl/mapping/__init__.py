"""
Mapping module: compiles declarative column/object maps into loader plans and
builds the attribute sets the row processor persists.
"""

from .attribute_builder import AttributeBuilder
from .condition_engine import ConditionEngine, CompiledCondition
from .loader_plan import LoaderPlanCompiler, LoaderPlanEntry
from .record_kinds import RecordKindStrategy, strategy_for
from .time_fields import Labtime, TimeNormalizer

__all__ = [
    'AttributeBuilder',
    'ConditionEngine',
    'CompiledCondition',
    'LoaderPlanCompiler',
    'LoaderPlanEntry',
    'RecordKindStrategy',
    'strategy_for',
    'Labtime',
    'TimeNormalizer'
]

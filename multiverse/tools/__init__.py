"""Tool wrapping and output contracts."""

from multiverse.tools.contract import ContractResult, OutputContract, SchemaValidator
from multiverse.tools.wrapper import BoundTool, EffectDeriver, WrappedTool, wrap

__all__ = [
    "ContractResult",
    "OutputContract",
    "SchemaValidator",
    "BoundTool",
    "EffectDeriver",
    "WrappedTool",
    "wrap",
]

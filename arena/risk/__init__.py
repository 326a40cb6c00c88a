"""Risk policy module for the Trading Arena.

- Symbol cooldowns after a close
- Ordered validation of proposed decisions (minimum size, cooldown, leverage cap)
"""

from arena.risk.cooldown import CooldownTracker
from arena.risk.validation import (
    LEVERAGE_LIMITS,
    RuleCheck,
    ValidatedDecision,
    ValidationPipeline,
    ValidationResult,
    ValidationRule,
)

__all__ = [
    'CooldownTracker',
    'LEVERAGE_LIMITS',
    'RuleCheck',
    'ValidatedDecision',
    'ValidationPipeline',
    'ValidationResult',
    'ValidationRule',
]

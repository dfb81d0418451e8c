#!/usr/bin/env python3
"""
unpin Bypass Module
iOS SSL pinning bypass strategies and their orchestration
"""

from .strategies import STRATEGIES, Outcome, Strategy, StrategyResult, strategy_keys
from .pinning import BypassConfig, BypassReport, PinningBypass

__all__ = [
    'STRATEGIES',
    'Outcome',
    'Strategy',
    'StrategyResult',
    'strategy_keys',
    'BypassConfig',
    'BypassReport',
    'PinningBypass'
]

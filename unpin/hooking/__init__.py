#!/usr/bin/env python3
"""
unpin Hooking Module
Runtime-patching substrate: symbol resolution, hook installation and challenge interception
"""

from .targets import ExportTarget, MethodTarget, PatternTarget, MethodMatch, ResolvedTarget
from .runtime import Runtime, NativeSignature, Pointer, ReturnValue
from .resolver import SymbolResolver
from .interceptor import (
    ArgumentStruct,
    HookInstaller,
    NativeCallback,
    NativeFunction,
    ObservationHook,
    ReplacementHook
)
from .challenge import (
    CapturedCallback,
    ChallengeInterceptor,
    ObjCTrustBroker,
    USE_CREDENTIAL
)

__all__ = [
    'ExportTarget',
    'MethodTarget',
    'PatternTarget',
    'MethodMatch',
    'ResolvedTarget',
    'Runtime',
    'NativeSignature',
    'Pointer',
    'ReturnValue',
    'SymbolResolver',
    'ArgumentStruct',
    'HookInstaller',
    'NativeCallback',
    'NativeFunction',
    'ObservationHook',
    'ReplacementHook',
    'CapturedCallback',
    'ChallengeInterceptor',
    'ObjCTrustBroker',
    'USE_CREDENTIAL'
]

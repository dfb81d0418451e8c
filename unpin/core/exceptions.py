#!/usr/bin/env python3
"""
Exceptions Module
Error types raised by the hooking substrate and the Frida bridge

Absence of a target is never an exception: resolvers return empty results
and strategies report ABSENT. Everything below is a real failure.
"""


class UnpinError(Exception):
    """Base class for all unpin errors"""


class UnresolvableTarget(UnpinError):
    """Raised when a hook is installed at an address with no code behind it"""

    def __init__(self, target: str):
        super().__init__(f"Cannot install hook, no code found for {target}")
        self.target = target


class InstallationConflict(UnpinError):
    """Raised when a second replacement is installed at an already replaced address"""

    def __init__(self, address: int, owner: str = ""):
        message = f"Address {address:#x} is already replaced"
        if owner:
            message += f" by {owner}"
        super().__init__(message)
        self.address = address
        self.owner = owner


class CallbackConsumed(UnpinError):
    """Raised when a captured completion callback is invoked more than once"""


class BridgeError(UnpinError):
    """Raised when the in-process agent reports an error or stops answering"""


class SessionError(UnpinError):
    """Raised when attaching to or scripting the target process fails"""

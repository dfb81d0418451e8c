#!/usr/bin/env python3
"""
Targets Module
Immutable descriptions of hookable locations and their resolution results
"""

from dataclasses import dataclass
from typing import Tuple, Union


@dataclass(frozen=True)
class ExportTarget:
    """An exported native function, e.g. SSLHandshake"""
    name: str

    def __str__(self) -> str:
        return f"{self.name}()"


@dataclass(frozen=True)
class MethodTarget:
    """
    A method on a named class

    selector follows the Frida ObjC notation: "- setSSLPinningMode:" for
    instance methods and "+ policyWithPinningMode:" for class methods.
    """
    class_name: str
    selector: str

    def __str__(self) -> str:
        kind, _, name = self.selector.partition(" ")
        return f"{kind}[{self.class_name} {name}]"


@dataclass(frozen=True)
class PatternTarget:
    """A wildcard method signature matched against every loaded class"""
    pattern: str

    def __str__(self) -> str:
        return self.pattern


TargetDescriptor = Union[ExportTarget, MethodTarget, PatternTarget]


@dataclass(frozen=True)
class MethodMatch:
    """
    One hit of a symbol lookup

    Attributes:
        name: Display name of the match (symbol or "-[Class selector]")
        address: Code address inside the target process
    """
    name: str
    address: int


@dataclass(frozen=True)
class ResolvedTarget:
    """
    A descriptor plus every address found for it

    Zero matches is a valid outcome and means the library or class is
    simply not loaded in this process.
    """
    descriptor: TargetDescriptor
    matches: Tuple[MethodMatch, ...] = ()

    @property
    def found(self) -> bool:
        return bool(self.matches)

    @property
    def addresses(self) -> Tuple[int, ...]:
        return tuple(m.address for m in self.matches)

    @property
    def first(self) -> MethodMatch:
        if not self.matches:
            raise LookupError(f"{self.descriptor} did not resolve")
        return self.matches[0]

    def __len__(self) -> int:
        return len(self.matches)

    def __iter__(self):
        return iter(self.matches)

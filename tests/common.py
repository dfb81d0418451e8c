"""
In-memory process image used in place of a Frida session

Functions, classes, Objective-C objects and blocks are plain Python
callables registered under fake addresses. invoke() plays the part of a
native caller: it goes through any replacement or listeners installed at
the address, exactly like a hooked function would.
"""

import itertools
import re
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from unpin.core.exceptions import BridgeError
from unpin.hooking.runtime import NativeSignature, ReturnValue, Runtime
from unpin.hooking.targets import MethodMatch


@dataclass
class _Listener:
    token: str
    on_enter: Optional[Callable]
    on_leave: Optional[Callable]
    active: bool = True


class SyntheticProcess(Runtime):

    def __init__(self):
        self.exports: Dict[str, int] = {}
        self.functions: Dict[int, Callable[..., Any]] = {}
        self.classes: Dict[str, Dict[str, int]] = {}
        self.objects: Dict[int, Dict[str, Any]] = {}
        self.class_objects: Dict[str, int] = {}
        self.blocks: Dict[int, Callable[..., Any]] = {}
        self.strings: Dict[int, str] = {}

        self.calls: Counter = Counter()
        self.history: Dict[int, List[Tuple[Any, ...]]] = defaultdict(list)
        self.released: List[Any] = []

        self._addresses = itertools.count(0x100000, 0x100)
        self._tokens = itertools.count(1)
        self._listeners: Dict[int, List[_Listener]] = defaultdict(list)
        self._by_token: Dict[str, Tuple[int, Any]] = {}
        self._replacements: Dict[int, Tuple[str, Callable[..., Any]]] = {}
        self._captured: Dict[str, Callable[..., Any]] = {}
        self._lock = threading.Lock()

    # Building the image

    def new_address(self) -> int:
        with self._lock:
            return next(self._addresses)

    def define_function(self, name: Optional[str], implementation: Callable[..., Any]) -> int:
        address = self.new_address()
        self.functions[address] = implementation
        if name:
            self.exports[name] = address
        return address

    def define_class(self, name: str):
        self.classes.setdefault(name, {})

    def define_method(self, class_name: str, selector: str, implementation: Callable[..., Any]) -> int:
        self.define_class(class_name)
        address = self.define_function(None, implementation)
        self.classes[class_name][selector] = address
        return address

    def new_object(self, messages: Optional[Dict[str, Any]] = None) -> int:
        handle = self.new_address()
        self.objects[handle] = dict(messages or {})
        return handle

    def new_class_object(self, name: str, messages: Dict[str, Any]) -> int:
        self.define_class(name)
        handle = self.new_object(messages)
        self.class_objects[name] = handle
        return handle

    def new_block(self, implementation: Callable[..., Any]) -> int:
        handle = self.new_address()
        self.blocks[handle] = implementation
        return handle

    # Acting as native code

    def invoke(self, address: int, *args: Any) -> Any:
        """Call the function at address the way the app would"""
        replacement = self._replacements.get(address)
        if replacement is not None:
            return replacement[1](*args)

        listeners = [entry for entry in self._listeners.get(address, []) if entry.active]
        values = list(args)
        for entry in listeners:
            if entry.on_enter:
                entry.on_enter(values)

        retval = ReturnValue(self._run_original(address, values))
        for entry in listeners:
            if entry.on_leave:
                entry.on_leave(retval)
        return retval.value

    def invoke_export(self, name: str, *args: Any) -> Any:
        return self.invoke(self.exports[name], *args)

    def invoke_method(self, class_name: str, selector: str, *args: Any) -> Any:
        return self.invoke(self.classes[class_name][selector], *args)

    def invoke_block(self, block: int, *args: Any) -> Any:
        return self.blocks[block](*args)

    def read_utf8(self, address: int) -> str:
        return self.strings[address]

    def _run_original(self, address: int, args: Sequence[Any]) -> Any:
        with self._lock:
            self.calls[address] += 1
            self.history[address].append(tuple(args))
        return self.functions[address](*args)

    def _token(self, prefix: str) -> str:
        with self._lock:
            return f"{prefix}{next(self._tokens)}"

    # Runtime

    def find_export(self, name):
        return self.exports.get(name)

    def class_exists(self, name):
        return name in self.classes

    def method_address(self, class_name, selector):
        return self.classes.get(class_name, {}).get(selector)

    def enumerate_methods(self, pattern):
        regex = re.compile("^" + re.escape(pattern).replace(r"\*", ".*") + "$")
        matches = []
        for class_name, methods in self.classes.items():
            for selector, address in methods.items():
                name = f"{selector[0]}[{class_name} {selector[2:]}]"
                if regex.match(name):
                    matches.append(MethodMatch(name=name, address=address))
        return matches

    def attach(self, address, arity, on_enter=None, on_leave=None):
        if address not in self.functions:
            raise BridgeError(f"unable to intercept function at {address:#x}")
        token = self._token("h")
        entry = _Listener(token, on_enter, on_leave)
        self._listeners[address].append(entry)
        self._by_token[token] = (address, entry)
        return token

    def detach(self, token):
        address, entry = self._by_token[token]
        entry.active = False
        self._listeners[address].remove(entry)

    def replace(self, address, signature: NativeSignature, implementation):
        if address not in self.functions:
            raise BridgeError(f"unable to intercept function at {address:#x}")
        if address in self._replacements:
            raise BridgeError(f"already replaced: {address:#x}")
        token = self._token("r")
        self._replacements[address] = (token, implementation)
        self._by_token[token] = (address, implementation)
        return token

    def revert(self, token):
        address, _ = self._by_token[token]
        current = self._replacements.get(address)
        if current is not None and current[0] == token:
            del self._replacements[address]

    def release(self, token):
        self.released.append(token)

    def is_replaced(self, address: int) -> bool:
        return address in self._replacements

    def call(self, address, signature, args, original=False):
        if original:
            return self._run_original(address, list(args))
        return self.invoke(address, *args)

    def objc_class(self, name):
        return self.class_objects.get(name)

    def objc_send(self, receiver, selector, *args):
        handler = self.objects[receiver][selector]
        return handler(*args) if callable(handler) else handler

    def swap_block(self, block, implementation):
        token = self._token("b")
        self._captured[token] = self.blocks[block]
        self.blocks[block] = implementation
        return token

    def call_block(self, token, args):
        original = self._captured.pop(token)
        return original(*args)

    def alloc_utf8(self, text):
        address = self.new_address()
        self.strings[address] = text
        return address

    def create_callback(self, signature, implementation):
        token = self._token("c")
        address = self.define_function(None, implementation)
        return token, address


@dataclass
class ChallengeImage:
    """An NSURLAuthenticationChallenge with everything it points at"""
    challenge: int
    trust: int
    sender: int
    credentials: Dict[int, int] = field(default_factory=dict)
    used: List[Tuple[int, int]] = field(default_factory=list)


def build_challenge(process: SyntheticProcess) -> ChallengeImage:
    """
    Lay out challenge.protectionSpace.serverTrust, challenge.sender and the
    NSURLCredential class inside the process
    """
    trust = process.new_object()
    space = process.new_object({"serverTrust": trust})
    image = ChallengeImage(challenge=0, trust=trust, sender=0)

    def credential_for_trust(value):
        credential = image.credentials.get(value)
        if credential is None:
            credential = image.credentials[value] = process.new_object()
        return credential

    def use_credential(credential, challenge):
        image.used.append((credential, challenge))

    if "NSURLCredential" not in process.class_objects:
        process.new_class_object("NSURLCredential", {"credentialForTrust:": credential_for_trust})
    else:
        process.objects[process.class_objects["NSURLCredential"]]["credentialForTrust:"] = credential_for_trust

    image.sender = process.new_object({"useCredential:forAuthenticationChallenge:": use_credential})
    image.challenge = process.new_object({"protectionSpace": space, "sender": image.sender})
    return image

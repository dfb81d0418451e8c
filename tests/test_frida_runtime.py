import logging
from collections import Counter

import pytest

from unpin.core.exceptions import BridgeError
from unpin.hooking.frida_runtime import FridaRuntime, decode, encode
from unpin.hooking.runtime import NativeSignature, Pointer

HANDSHAKE = NativeSignature('int', ('pointer',))


class FakeExports:

    def __init__(self, answers):
        self.answers = answers
        self.requests = []

    def __getattr__(self, name):
        def rpc(*params):
            self.requests.append((name, params))
            answer = self.answers.get(name)
            if isinstance(answer, Exception):
                raise answer
            return answer
        return rpc


class FakeScript:
    """Answers frame requests synchronously, the way the agent's serve() loop would"""

    def __init__(self, runtime, exports=None, results=None):
        self.runtime = runtime
        self.exports_sync = FakeExports(exports or {})
        self.results = results or {}
        self.posted = []

    def post(self, message):
        self.posted.append(message)
        if message['op'] == 'return':
            return
        answer = self.results[message['op']]
        self.runtime._on_message({'type': 'send', 'payload': {
            'type': 'result', 'token': message['type'], 'id': message['id'],
            'result': answer, 'error': None
        }}, None)


class FakeEngine:

    def __init__(self):
        self.stats = Counter()
        self.script_errors = []

    def record(self, counter, amount=1):
        self.stats[counter] += amount

    def log_script_error(self, message):
        self.script_errors.append(message)


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def runtime(engine):
    runtime = FridaRuntime(engine, max_workers=2, timeout=1.0)
    runtime.script = FakeScript(runtime)
    yield runtime
    runtime._executor.shutdown(wait=True)


def call_message(kind, hook, token="t1:1", **payload):
    return dict(type='call', kind=kind, hook=hook, token=token, **payload)


def test_value_encoding():
    assert encode(Pointer(0xC0)) == "0xc0"
    assert encode(-9481) == "-9481"
    assert encode(True) == "1"
    assert encode(None) == "0x0"
    assert decode("0xc0") == 0xC0
    assert isinstance(decode("0xc0"), Pointer)
    assert decode("-9481") == -9481
    assert decode(None) is None

    with pytest.raises(TypeError):
        encode("fakePSKidentity")


def test_symbol_lookups_use_rpc(runtime):
    runtime.script.exports_sync.answers['find_export'] = "0x1000"

    assert runtime.find_export("SSLHandshake") == 0x1000
    assert runtime.script.exports_sync.requests == [('find_export', ("SSLHandshake",))]


def test_rpc_failure_becomes_bridge_error(runtime):
    runtime.script.exports_sync.answers['class_exists'] = RuntimeError("script is destroyed")

    with pytest.raises(BridgeError):
        runtime.class_exists("AFSecurityPolicy")


def test_replacement_call_round_trip(runtime, engine):
    token = runtime.replace(0x1000, HANDSHAKE, lambda ctx: 0)

    assert runtime.script.exports_sync.requests == [('replace', ("0x1000", token, 'int', ['pointer']))]

    runtime._serve(call_message('replace', token, args=["0xc0"]))

    assert runtime.script.posted == [{'type': 't1:1', 'op': 'return', 'value': '0'}]
    assert engine.stats['calls_served'] == 1


def test_call_through_inside_callback_uses_the_frame(runtime):
    runtime.script.results['call'] = "-9481"
    seen = []

    def handshake(ctx):
        seen.append(runtime.call(0x1000, HANDSHAKE, [ctx], original=True))
        return 0

    token = runtime.replace(0x1000, HANDSHAKE, handshake)
    runtime._serve(call_message('replace', token, args=["0xc0"]))

    request, reply = runtime.script.posted
    assert request == {
        'type': 't1:1', 'op': 'call', 'id': 1,
        'params': ["0x1000", 'int', ['pointer'], ["0xc0"], True]
    }
    assert reply == {'type': 't1:1', 'op': 'return', 'value': '0'}
    assert seen == [-9481]


def test_enter_reports_only_changed_arguments(runtime):
    def on_enter(values):
        values[2] = 0

    token = runtime.attach(0x2000, 3, on_enter=on_enter)
    runtime._serve(call_message('enter', token, args=["0x1", "0x2", "2"]))

    assert runtime.script.posted[-1] == {'type': 't1:1', 'op': 'return', 'args': {'2': '0'}}


def test_leave_reports_replaced_return_value(runtime):
    token = runtime.attach(0x2000, 0, on_leave=lambda retval: retval.replace(0))
    runtime._serve(call_message('leave', token, retval="0x1"))

    assert runtime.script.posted[-1] == {'type': 't1:1', 'op': 'return', 'retval': '0'}


def test_failing_callback_passes_through(runtime, engine):
    def broken(ctx):
        raise ValueError("boom")

    token = runtime.replace(0x1000, HANDSHAKE, broken)
    runtime._serve(call_message('replace', token, args=["0xc0"]))

    assert runtime.script.posted[-1] == {'type': 't1:1', 'op': 'return', 'passthrough': True}
    assert engine.stats['errors'] == 1


def test_call_messages_are_served_on_workers(runtime):
    token = runtime.replace(0x1000, HANDSHAKE, lambda ctx: 0)

    runtime._on_message({'type': 'send', 'payload': call_message('replace', token, args=["0xc0"])}, None)
    runtime._executor.shutdown(wait=True)

    assert runtime.script.posted == [{'type': 't1:1', 'op': 'return', 'value': '0'}]


def test_script_errors_go_to_the_engine(runtime, engine):
    runtime._on_message({'type': 'error', 'description': 'ReferenceError: ObjC is not defined'}, None)

    assert engine.script_errors[0]['description'] == 'ReferenceError: ObjC is not defined'


def test_late_call_after_release_passes_through_quietly(runtime, engine, caplog):
    token = runtime.replace(0x1000, HANDSHAKE, lambda ctx: 0)
    runtime.release(token)

    with caplog.at_level(logging.DEBUG, logger="unpin.hooking.frida_runtime"):
        runtime._serve(call_message('replace', token, args=["0xc0"]))
        runtime._serve(call_message('enter', "h99", token="t1:2", args=["0x1"]))

    assert runtime.script.posted == [
        {'type': 't1:1', 'op': 'return', 'passthrough': True},
        {'type': 't1:2', 'op': 'return', 'passthrough': True},
    ]
    assert engine.stats['errors'] == 0
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


def test_repeat_block_call_still_reaches_the_swapped_implementation(runtime, engine):
    calls = []
    token = runtime.swap_block(0x3000, lambda *args: calls.append(args))

    runtime._serve(call_message('block', token, args=["0", "0x42"]))
    runtime.call_block(token, [0, Pointer(0x42)])
    runtime._serve(call_message('block', token, token="t1:2", args=["2", "0x0"]))

    assert calls == [(0, 0x42), (2, 0)]
    assert engine.stats['errors'] == 0


def test_missing_replace_fast_is_reported(runtime, engine, caplog):
    runtime.script.exports_sync.answers['capabilities'] = {'replaceFast': False}

    with caplog.at_level(logging.WARNING, logger="unpin.hooking.frida_runtime"):
        runtime._check_capabilities()

    assert "replaceFast is not available" in caplog.text
    assert engine.stats['warnings'] == 1


def test_replace_fast_present_is_silent(runtime, engine, caplog):
    runtime.script.exports_sync.answers['capabilities'] = {'replaceFast': True}

    with caplog.at_level(logging.WARNING, logger="unpin.hooking.frida_runtime"):
        runtime._check_capabilities()

    assert caplog.text == ""
    assert engine.stats['warnings'] == 0

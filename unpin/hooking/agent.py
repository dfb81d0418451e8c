#!/usr/bin/env python3
"""
Agent Script Module - 대상 프로세스에 주입되는 Frida 에이전트

에이전트는 후킹 로직을 전혀 갖지 않는 범용 브리지입니다.
모든 판단은 Python 쪽 콜백이 내리고, 에이전트는 기본 연산만 수행합니다.

## 동작 방식:
1. **RPC exports**: 심볼 조회, attach/replace 설치, 네이티브 호출 등
2. **serve() 루프**: 후킹된 호출이 들어오면
   - send({type:'call', token, ...})로 Python에 알리고
   - recv(token).wait()로 해당 네이티브 스레드를 블로킹
   - Python이 보낸 요청(op)을 같은 스레드에서 실행하고 결과 회신
   - op === 'return'을 받으면 결과를 적용하고 원래 호출로 복귀
3. **지연 해제**: release()된 NativeCallback은 실행 중 호출이 0이 될 때까지 보관

## Interceptor.replaceFast:
교체 후킹은 replaceFast가 돌려준 트램펄린을 원본 호출에 사용합니다.
replaceFast가 없는 Frida 빌드에서는 Interceptor.replace로 설치하고 트램펄린은
대상 주소 그대로가 되어, 다른 후킹에서 원본을 호출하면 교체 함수로 다시 들어갑니다.
capabilities()로 이를 알리고 FridaRuntime이 경고를 남깁니다.

## 값 인코딩:
- 포인터: "0x..." 16진 문자열
- 정수: 10진 문자열
"""

AGENT_SOURCE = r"""
'use strict';

const hooks = new Map();
const originals = new Map();
const captures = new Map();
const retained = [];
let sequence = 0;

function encode(value) {
  if (value === undefined || value === null) {
    return '0x0';
  }
  if (typeof value === 'boolean') {
    return value ? '1' : '0';
  }
  if (value instanceof NativePointer) {
    return value.toString();
  }
  if (typeof value === 'object' && value.handle !== undefined) {
    return value.handle.toString();
  }
  return String(value);
}

function decodeLoose(value) {
  if (typeof value === 'string' && value.indexOf('0x') !== -1) {
    return ptr(value);
  }
  return Number(value);
}

function decode(value, type) {
  switch (type) {
    case 'void':
      return undefined;
    case 'pointer':
      return ptr(value);
    case 'int64':
      return int64(value);
    case 'uint64':
      return uint64(value);
    case 'bool':
      return Number(value) !== 0 ? 1 : 0;
    default:
      return Number(value);
  }
}

function serve(kind, hookId, payload) {
  const token = 't' + Process.getCurrentThreadId() + ':' + (++sequence);
  send(Object.assign({ type: 'call', kind: kind, hook: hookId, token: token }, payload));

  for (;;) {
    let request = null;
    recv(token, function (message) { request = message; }).wait();
    if (request.op === 'return') {
      return request;
    }

    let result = null;
    let error = null;
    try {
      result = operations[request.op].apply(null, request.params);
    } catch (e) {
      error = (e && e.message) ? e.message : String(e);
    }
    send({ type: 'result', token: token, id: request.id, result: result, error: error });
  }
}

function collect(args, count) {
  const values = [];
  for (let i = 0; i < count; i++) {
    values.push(encode(args[i]));
  }
  return values;
}

function retire(id) {
  const entry = hooks.get(id);
  if (entry !== undefined && entry.retired && entry.inflight === 0) {
    hooks.delete(id);
  }
}

function findExport(name) {
  const address = (typeof Module.findGlobalExportByName === 'function')
    ? Module.findGlobalExportByName(name)
    : Module.findExportByName(null, name);
  return (address === null || address.isNull()) ? null : address.toString();
}

function objcReady() {
  return typeof ObjC !== 'undefined' && ObjC.available;
}

function classExists(name) {
  return objcReady() && ObjC.classes.hasOwnProperty(name);
}

function methodAddress(className, selector) {
  if (!classExists(className)) {
    return null;
  }
  const method = ObjC.classes[className][selector];
  return method === undefined ? null : method.implementation.toString();
}

function enumerateMethods(pattern) {
  if (!objcReady()) {
    return [];
  }
  return new ApiResolver('objc').enumerateMatches(pattern).map(function (match) {
    return { name: match.name, address: match.address.toString() };
  });
}

function attach(address, id, arity, enter, leave) {
  const callbacks = {};
  if (enter) {
    callbacks.onEnter = function (args) {
      const reply = serve('enter', id, { args: collect(args, arity) });
      const changed = reply.args || {};
      Object.keys(changed).forEach(function (index) {
        args[parseInt(index, 10)] = ptr(changed[index]);
      });
    };
  }
  if (leave) {
    callbacks.onLeave = function (retval) {
      const reply = serve('leave', id, { retval: retval.toString() });
      if (reply.retval !== undefined && reply.retval !== null) {
        retval.replace(ptr(reply.retval));
      }
    };
  }
  hooks.set(id, { listener: Interceptor.attach(ptr(address), callbacks), inflight: 0, retired: false });
  Interceptor.flush();
  return id;
}

function detach(id) {
  const entry = hooks.get(id);
  if (entry !== undefined && entry.listener !== undefined) {
    entry.listener.detach();
  }
}

function replace(address, id, retType, argTypes) {
  const target = ptr(address);
  const key = target.toString();
  if (originals.has(key)) {
    throw new Error('already replaced: ' + key);
  }

  const entry = { address: target, trampoline: target, inflight: 0, retired: false };
  entry.callback = new NativeCallback(function () {
    entry.inflight++;
    try {
      const reply = serve('replace', id, { args: collect(arguments, argTypes.length) });
      if (reply.passthrough) {
        const original = new NativeFunction(entry.trampoline, retType, argTypes);
        return original.apply(null, Array.prototype.slice.call(arguments));
      }
      return decode(reply.value, retType);
    } finally {
      entry.inflight--;
      retire(id);
    }
  }, retType, argTypes);

  hooks.set(id, entry);
  if (typeof Interceptor.replaceFast === 'function') {
    entry.trampoline = Interceptor.replaceFast(target, entry.callback);
  } else {
    Interceptor.replace(target, entry.callback);
  }
  Interceptor.flush();

  originals.set(key, entry.trampoline);
  return id;
}

function revert(id) {
  const entry = hooks.get(id);
  if (entry === undefined || entry.address === undefined) {
    return;
  }
  Interceptor.revert(entry.address);
  Interceptor.flush();
  originals.delete(entry.address.toString());
}

function release(id) {
  const entry = hooks.get(id);
  if (entry !== undefined) {
    entry.retired = true;
    retire(id);
  }
}

function call(address, retType, argTypes, values, original) {
  const key = ptr(address).toString();
  const target = (original && originals.has(key)) ? originals.get(key) : ptr(address);
  const fn = new NativeFunction(target, retType, argTypes);
  const args = values.map(function (value, i) { return decode(value, argTypes[i]); });
  return encode(fn.apply(null, args));
}

function objcClass(name) {
  return classExists(name) ? ObjC.classes[name].handle.toString() : null;
}

function objcSend(receiver, selector, values) {
  const target = new ObjC.Object(ptr(receiver));
  const method = target[selector.replace(/:/g, '_')];
  if (method === undefined) {
    throw new Error('unrecognized selector ' + selector);
  }
  return encode(method.apply(target, values.map(decodeLoose)));
}

function swapBlock(block, id) {
  const target = new ObjC.Block(ptr(block));
  captures.set(id, target.implementation);
  target.implementation = function () {
    serve('block', id, { args: collect(arguments, arguments.length) });
  };
  return id;
}

function callBlock(id, values) {
  const saved = captures.get(id);
  if (saved === undefined) {
    throw new Error('no captured block ' + id);
  }
  captures.delete(id);
  return encode(saved.apply(null, values.map(decodeLoose)));
}

function createCallback(id, retType, argTypes) {
  const entry = { inflight: 0, retired: false };
  entry.callback = new NativeCallback(function () {
    entry.inflight++;
    try {
      const reply = serve('callback', id, { args: collect(arguments, argTypes.length) });
      return decode(reply.passthrough ? '0' : reply.value, retType);
    } finally {
      entry.inflight--;
      retire(id);
    }
  }, retType, argTypes);
  hooks.set(id, entry);
  return entry.callback.toString();
}

function capabilities() {
  return { replaceFast: typeof Interceptor.replaceFast === 'function' };
}

function allocUtf8(text) {
  const memory = Memory.allocUtf8String(text);
  retained.push(memory);
  return memory.toString();
}

const operations = {
  findExport: findExport,
  classExists: classExists,
  methodAddress: methodAddress,
  enumerateMethods: enumerateMethods,
  attach: attach,
  detach: detach,
  replace: replace,
  revert: revert,
  release: release,
  call: call,
  objcClass: objcClass,
  objcSend: objcSend,
  swapBlock: swapBlock,
  callBlock: callBlock,
  createCallback: createCallback,
  allocUtf8: allocUtf8,
  capabilities: capabilities
};

rpc.exports = operations;
"""

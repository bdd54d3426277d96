from __future__ import annotations

import hashlib
import importlib.util
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from lexer import CabsiError, Opcode, lookup_opcode


EXTENSION_API_VERSION = 1

logger = logging.getLogger(__name__)

HOOK_EVENTS = ("program_start", "before_step", "after_step", "program_end", "on_error")

OpcodeHandler = Callable[[Any], None]


class CabsiExtensionError(CabsiError):
    pass


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


@dataclass(frozen=True)
class StepContext:
    step_index: int
    line_number: int
    mnemonic: str
    extra: Optional[Dict[str, Any]]


def as_opcode(key: Union[Opcode, str, int]) -> Opcode:
    if isinstance(key, Opcode):
        return key
    if isinstance(key, str):
        opcode = lookup_opcode(key)
        if opcode is None:
            raise CabsiExtensionError(f"Unknown instruction '{key}'")
        return opcode
    try:
        return Opcode(key)
    except ValueError:
        raise CabsiExtensionError(f"Unknown opcode {key!r}")


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, ext_name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)
    # list[(every_n, handler, ext_name, name)]
    _step_rules: List[Tuple[int, Callable[[Any, StepContext], None], str, str]] = field(default_factory=list)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        if event not in HOOK_EVENTS:
            raise CabsiExtensionError(f"Unknown hook event '{event}'")
        self._events.setdefault(event, []).append((priority, handler, ext_name))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _ext in self._events.get(event, []):
            handler(*args, **kwargs)

    def add_step_rule(self, *, name: str, every_n: int, handler: Callable[[Any, StepContext], None], ext_name: str) -> None:
        if every_n <= 0:
            raise CabsiExtensionError("every_n_steps must be >= 1")
        self._step_rules.append((every_n, handler, ext_name, name))

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for every_n, handler, _ext, _name in self._step_rules:
            if ctx.step_index % every_n == 0:
                handler(interpreter, ctx)


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    hook_registry: HookRegistry = field(default_factory=HookRegistry)
    # opcode -> (handler, ext_name); installed as per-instance overrides
    handlers: Dict[Opcode, Tuple[OpcodeHandler, str]] = field(default_factory=dict)

    def overrides(self) -> Dict[Opcode, OpcodeHandler]:
        return {opcode: handler for opcode, (handler, _ext) in self.handlers.items()}


class ExtensionAPI:
    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self._ext_name = ext_name

    # ---- metadata ----
    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        self._services.metadata.append(ExtensionMetadata(name=name, version=version, requires_api=requires_api))

    # ---- opcode handlers ----
    def register_handler(self, key: Union[Opcode, str, int], handler: OpcodeHandler) -> None:
        opcode = as_opcode(key)
        previous = self._services.handlers.get(opcode)
        if previous is not None and previous[1] != self._ext_name:
            raise CabsiExtensionError(
                f"Instruction {opcode.name} is already overridden by extension '{previous[1]}'"
            )
        self._services.handlers[opcode] = (handler, self._ext_name)

    def opcode(self, key: Union[Opcode, str, int]):
        def deco(fn: OpcodeHandler) -> OpcodeHandler:
            self.register_handler(key, fn)
            return fn

        return deco

    # ---- hooks ----
    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self._services.hook_registry.on_event(event, fn, priority=priority, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.on_event(event, handler, priority=priority, ext_name=self._ext_name)
        return handler

    def every_n_steps(self, every_n: int, handler: Optional[Callable[[Any, StepContext], None]] = None, *, name: str = ""):
        if handler is None:
            def deco(fn: Callable[[Any, StepContext], None]) -> Callable[[Any, StepContext], None]:
                self._services.hook_registry.add_step_rule(name=name or fn.__name__, every_n=every_n, handler=fn, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.add_step_rule(name=name or handler.__name__, every_n=every_n, handler=handler, ext_name=self._ext_name)
        return handler


def _unique_module_name(path: str) -> str:
    base = os.path.basename(path)
    digest = hashlib.sha256(os.path.abspath(path).encode("utf-8")).hexdigest()[:12]
    safe = "".join(ch if ch.isalnum() else "_" for ch in base)
    return f"cabsi_ext_{safe}_{digest}"


def load_extension_module(path: str) -> Any:
    if not os.path.exists(path):
        raise CabsiExtensionError(f"Extension not found: {path}")
    mod_name = _unique_module_name(path)
    spec = importlib.util.spec_from_file_location(mod_name, path)
    if spec is None or spec.loader is None:
        raise CabsiExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)

    # Let extensions import siblings by temporarily prepending their directory.
    ext_dir = os.path.dirname(os.path.abspath(path))
    sys.path.insert(0, ext_dir)
    try:
        spec.loader.exec_module(module)  # type: ignore[union-attr]
    finally:
        if sys.path and sys.path[0] == ext_dir:
            sys.path.pop(0)
    return module


def read_cabx(pointer_file: str) -> List[str]:
    if not os.path.exists(pointer_file):
        raise CabsiExtensionError(f".cabx file not found: {pointer_file}")
    base_dir = os.path.dirname(os.path.abspath(pointer_file))
    out: List[str] = []
    with open(pointer_file, "r", encoding="utf-8") as handle:
        for raw in handle.read().splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            # Allow inline comments: path # comment
            if "#" in line:
                line = line.split("#", 1)[0].strip()
                if not line:
                    continue
            if not os.path.isabs(line):
                line = os.path.abspath(os.path.join(base_dir, line))
            out.append(line)
    return out


def gather_extension_paths(paths: Sequence[str]) -> List[str]:
    expanded: List[str] = []
    for p in paths:
        if p.lower().endswith(".cabx"):
            expanded.extend(read_cabx(p))
        else:
            expanded.append(p)
    return [os.path.abspath(p) for p in expanded]


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = RuntimeServices()
    for path in gather_extension_paths(paths):
        module = load_extension_module(path)
        api_version = getattr(module, "CABSI_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
        if api_version != EXTENSION_API_VERSION:
            raise CabsiExtensionError(
                f"Extension {path} requires API {api_version}, host supports {EXTENSION_API_VERSION}"
            )
        register = getattr(module, "cabsi_register", None)
        if register is None or not callable(register):
            raise CabsiExtensionError(f"Extension {path} must define callable cabsi_register(ext)")
        ext_name = getattr(module, "CABSI_EXTENSION_NAME", os.path.splitext(os.path.basename(path))[0])
        ext = ExtensionAPI(services=services, ext_name=str(ext_name))
        register(ext)
        logger.debug("Loaded extension %s from %s", ext_name, path)
    return services

from __future__ import annotations
import asyncio
import json
import logging
import math
import re
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from console import CharSource, OutputSink, StreamSource, stdout_sink
from extensions import HookRegistry, RuntimeServices, StepContext, as_opcode
from lexer import CabsiError, CabsiParseError, Instruction, Lexer, Opcode, Program
from parser import (
    NULL,
    TYPE_FLT,
    TYPE_INT,
    TYPE_STR,
    Value,
    code_point,
    from_code_point,
    make_bool,
    make_flt,
    make_int,
    make_number,
    make_str,
    parse_int_prefix,
    parse_literal,
    render_stack,
    to_display,
    to_float,
    to_int,
    to_text,
)


logger = logging.getLogger(__name__)

Handler = Callable[["Interpreter"], None]

OPERAND = "operand"
REGISTER = "register"
CALL = "call"

_DEPTH_RE = re.compile(r"[0-9]+")

_READS_INPUT = frozenset({Opcode.INPUT, Opcode.GETC, Opcode.GETL, Opcode.GETW})


class CabsiRuntimeError(CabsiError):
    """Raised for runtime faults that escape the run loop."""

    def __init__(
        self,
        message: str,
        *,
        instruction: Optional[Instruction] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.instruction = instruction
        self.rule = rule
        self.step_index: Optional[int] = None


class TypeFault(CabsiRuntimeError):
    """An operand of the wrong kind; recovered by ending the run."""


@dataclass(frozen=True)
class Diagnostic:
    kind: str
    mnemonic: str
    line_number: int
    message: str
    stack: str = OPERAND
    expected: Optional[int] = None
    actual: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "mnemonic": self.mnemonic,
            "line": self.line_number,
            "stack": self.stack,
            "expected": self.expected,
            "actual": self.actual,
            "message": self.message,
        }


class CancellationToken:
    """Requests that a cooperative run stop at the next step boundary."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class LineIndex:
    """Maps jump targets to program positions.

    Defined lines resolve exactly. Any other line number resolves to the first
    instruction after it, and numbers past the last line resolve to ``end``.
    """

    def __init__(self, program: Program) -> None:
        lines = program.line_numbers
        self.positions: Dict[int, int] = {line: pos for pos, line in enumerate(lines)}
        self.lines: NDArray[np.int64] = np.asarray(lines, dtype=np.int64)
        self.end = len(lines)

    def __contains__(self, line: int) -> bool:
        return line in self.positions

    def resolve(self, target: Optional[int]) -> int:
        if target is None:
            return self.end
        exact = self.positions.get(target)
        if exact is not None:
            return exact
        if self.end == 0 or target > int(self.lines[-1]):
            return self.end
        if target < int(self.lines[0]):
            return 0
        return int(np.searchsorted(self.lines, target, side="right"))


@dataclass
class StepEntry:
    step_index: int
    line_number: int
    mnemonic: str
    pointer: int
    stack_snapshot: Optional[List[str]]


class TraceLog:
    def __init__(self, verbose: bool, limit: int = 1024) -> None:
        self.verbose = verbose
        self.entries: Deque[StepEntry] = deque(maxlen=limit)
        self.next_step_index = 0

    def record(self, *, instruction: Instruction, pointer: int, stack: Optional[List[Value]]) -> StepEntry:
        entry = StepEntry(
            step_index=self.next_step_index,
            line_number=instruction.line_number,
            mnemonic=instruction.mnemonic,
            pointer=pointer,
            stack_snapshot=[str(v) for v in stack] if stack is not None else None,
        )
        self.entries.append(entry)
        self.next_step_index += 1
        return entry

    @property
    def last(self) -> Optional[StepEntry]:
        return self.entries[-1] if self.entries else None


# ---- operand semantics ----

def _expect_numbers(rule: str, *values: Value) -> None:
    for value in values:
        if not value.is_numeric:
            raise TypeFault(f"{rule} expects numeric operands, got {value.type}", rule=rule)


def _as_float(x: Union[int, float]) -> float:
    try:
        return float(x)
    except OverflowError:
        return math.inf if x > 0 else -math.inf


def _promote(x: Union[int, float], y: Union[int, float]) -> Tuple[Union[int, float], Union[int, float]]:
    # Mixed arithmetic runs in floats; integers too large for a float become infinite.
    if isinstance(x, float) or isinstance(y, float):
        return _as_float(x), _as_float(y)
    return x, y


def _divide(x: Union[int, float], y: Union[int, float]) -> float:
    x, y = _promote(x, y)
    if y == 0:
        if x == 0 or math.isnan(x):
            return math.nan
        return (math.inf if x > 0 else -math.inf) * math.copysign(1.0, y)
    try:
        return x / y
    except OverflowError:
        return math.inf if (x > 0) == (y > 0) else -math.inf


def _remainder(x: Union[int, float], y: Union[int, float]) -> Union[int, float]:
    # Sign follows the dividend.
    x, y = _promote(x, y)
    if isinstance(x, int) and isinstance(y, int):
        if y == 0:
            return math.nan
        r = abs(x) % abs(y)
        return -r if x < 0 else r
    try:
        return math.fmod(x, y)
    except ValueError:
        return math.nan


def _add(a: Value, b: Value) -> Value:
    if a.type == TYPE_STR or b.type == TYPE_STR:
        return make_str(to_display(a) + to_display(b))
    _expect_numbers("ADD", a, b)
    x, y = _promote(a.value, b.value)
    return make_number(x + y)


def _sub(a: Value, b: Value) -> Value:
    _expect_numbers("SUB", a, b)
    x, y = _promote(a.value, b.value)
    return make_number(x - y)


def _mul(a: Value, b: Value) -> Value:
    _expect_numbers("MUL", a, b)
    x, y = _promote(a.value, b.value)
    return make_number(x * y)


def _div(a: Value, b: Value) -> Value:
    _expect_numbers("DIV", a, b)
    return make_flt(_divide(a.value, b.value))


def _mod(a: Value, b: Value) -> Value:
    _expect_numbers("MOD", a, b)
    return make_number(_remainder(a.value, b.value))


def _equals(a: Value, b: Value) -> bool:
    if a.is_numeric and b.is_numeric:
        return a.value == b.value
    return a.type == b.type and a.value == b.value


def _ordering(rule: str, op: Callable[[Any, Any], bool]) -> Callable[[Value, Value], Value]:
    def compare(a: Value, b: Value) -> Value:
        if (a.is_numeric and b.is_numeric) or (a.type == TYPE_STR and b.type == TYPE_STR):
            return make_bool(op(a.value, b.value))
        raise TypeFault(f"{rule} cannot compare {a.type} with {b.type}", rule=rule)

    return compare


class Interpreter:
    DEFAULT_HANDLERS: Dict[Opcode, Handler] = {}

    def __init__(
        self,
        program: Program,
        *,
        filename: str = "<string>",
        input_source: Optional[CharSource] = None,
        output_sink: Optional[OutputSink] = None,
        services: Optional[RuntimeServices] = None,
        verbose: bool = False,
    ) -> None:
        self.program = program
        self.filename = filename
        self.line_index = LineIndex(program)
        self.input_source: CharSource = input_source if input_source is not None else StreamSource()
        self.output_sink: OutputSink = output_sink or stdout_sink
        self.services = services or RuntimeServices()
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.verbose = verbose

        self.stack: List[Value] = []
        self.registers: List[Value] = []
        self.call_stack: List[int] = []
        self.pointer = 0
        self.killed = False
        self.current: Optional[Instruction] = None
        self.diagnostics: List[Diagnostic] = []
        self.trace = TraceLog(verbose=verbose)
        # Consulted before DEFAULT_HANDLERS.
        self.overrides: Dict[Opcode, Handler] = self.services.overrides()

    @classmethod
    def from_source(cls, text: str, *, filename: str = "<string>", **kwargs: Any) -> "Interpreter":
        return cls(Lexer(text, filename).tokenize(), filename=filename, **kwargs)

    # ---- host surface ----

    def bind_io(self, *, input_source: Optional[CharSource] = None, output_sink: Optional[OutputSink] = None) -> None:
        if input_source is not None:
            self.input_source = input_source
        if output_sink is not None:
            self.output_sink = output_sink

    def install_handler(self, key: Union[Opcode, str, int], handler: Handler) -> None:
        self.overrides[as_opcode(key)] = handler

    def remove_handler(self, key: Union[Opcode, str, int]) -> None:
        self.overrides.pop(as_opcode(key), None)

    def handler_for(self, opcode: Optional[Opcode]) -> Optional[Handler]:
        if opcode is None:
            return None
        handler = self.overrides.get(opcode)
        if handler is None:
            handler = self.DEFAULT_HANDLERS.get(opcode)
        return handler

    @property
    def finished(self) -> bool:
        return self.killed or not 0 <= self.pointer < len(self.program)

    def kill(self) -> None:
        self.killed = True
        self.pointer = len(self.program)

    # ---- execution ----

    def step(self) -> bool:
        if self.finished:
            return False
        instruction = self.program[self.pointer]
        self.current = instruction
        self._emit_event("before_step", self, instruction)
        entry = self._log_step(instruction)

        handler = self.handler_for(instruction.opcode)
        if handler is None:
            logger.warning("Unimplemented instruction: %s (line %d)", instruction.mnemonic, instruction.line_number)
        else:
            try:
                handler(self)
            except TypeFault as fault:
                self._fault("TypeFault", fault.message)
        if not self.killed:
            self.pointer += 1

        self._run_step_rules(instruction, entry)
        self._emit_event("after_step", self, instruction)
        return True

    def run(self) -> None:
        self._emit_event("program_start", self)
        try:
            while self.step():
                pass
        except Exception as exc:
            raise self._escaping(exc)
        self._emit_event("program_end", self)

    async def run_cooperatively(
        self,
        step_delay: float = 0.0,
        cancel_token: Optional[CancellationToken] = None,
    ) -> bool:
        """Run one step per scheduling slot.

        Cancellation is only observed between steps. Instructions that read
        from a blocking source run in a worker thread so other tasks keep
        running while the read waits. Returns True when the run ended by
        being killed (EXIT, a fault or cancellation) and False when it ran
        off the end of the program.
        """
        self._emit_event("program_start", self)
        try:
            while not self.finished:
                if cancel_token is not None and cancel_token.cancelled:
                    logger.info("Run cancelled before line %d: %s", self.program[self.pointer].line_number, cancel_token.reason or "no reason given")
                    self.kill()
                    break
                if self.input_source.blocking and self.program[self.pointer].opcode in _READS_INPUT:
                    await asyncio.to_thread(self.step)
                else:
                    self.step()
                await asyncio.sleep(step_delay)
        except Exception as exc:
            raise self._escaping(exc)
        self._emit_event("program_end", self)
        return self.killed

    def _escaping(self, exc: Exception) -> CabsiError:
        self._emit_event("on_error", self, exc)
        last = self.trace.last
        if isinstance(exc, CabsiRuntimeError):
            error: CabsiError = exc
            if exc.instruction is None:
                exc.instruction = self.current
        elif isinstance(exc, CabsiError):
            error = exc
        else:
            # Surface Python-level failures (for example from host handlers)
            # as interpreter errors so callers can format them uniformly.
            error = CabsiRuntimeError(f"Internal interpreter error: {exc}", instruction=self.current, rule="internal")
            error.__cause__ = exc
        if last is not None and isinstance(error, CabsiRuntimeError):
            error.step_index = last.step_index
        return error

    # ---- control flow ----

    def jump_to_line(self, target: Optional[int], decrement: bool = True) -> None:
        if target is None:
            logger.warning("Cannot jump to line %s", self.current.params[0] if self.current and self.current.params else "<missing>")
        position = self.line_index.resolve(target)
        if decrement:
            # The step loop advances the pointer after every instruction.
            position -= 1
        self.pointer = position

    def resolve_reference(self, token: str) -> Union[Value, str, None]:
        """Resolve ``@n`` (peek) and ``$n`` (remove) at depth n from the top."""
        prefix = token[:1]
        if prefix not in ("@", "$"):
            return token
        if not _DEPTH_RE.fullmatch(token[1:]):
            return None
        depth = int(token[1:])
        if not 1 <= depth <= len(self.stack):
            return None
        if prefix == "@":
            return self.stack[-depth]
        return self.stack.pop(-depth)

    def line_target(self, param: Optional[str]) -> Optional[int]:
        if param is None:
            return None
        resolved = self.resolve_reference(param)
        if resolved is None:
            return None
        if isinstance(resolved, str):
            return parse_int_prefix(resolved)
        if resolved.type == TYPE_INT:
            return resolved.value
        if resolved.type == TYPE_FLT and math.isfinite(resolved.value):
            return math.trunc(resolved.value)
        if resolved.type == TYPE_STR:
            return parse_int_prefix(resolved.value)
        return None

    def param(self, index: int) -> Optional[str]:
        params = self.current.params if self.current else ()
        return params[index] if index < len(params) else None

    # ---- stacks ----

    def push(self, *values: Value) -> None:
        self.stack.extend(values)

    def pop(self) -> Value:
        return self.stack.pop()

    def require(self, count: int, *, stack: str = OPERAND) -> bool:
        depth = len(self._stack_named(stack))
        if depth >= count:
            return True
        self._fault(
            "StackUnderflow",
            f"Expected {count} entries on {stack} stack, got {depth}",
            stack=stack,
            expected=count,
            actual=depth,
        )
        return False

    def _stack_named(self, name: str) -> List[Any]:
        if name == REGISTER:
            return self.registers
        if name == CALL:
            return self.call_stack
        return self.stack

    def _fault(self, kind: str, message: str, **details: Any) -> None:
        instruction = self.current
        diagnostic = Diagnostic(
            kind=kind,
            mnemonic=instruction.mnemonic if instruction else "?",
            line_number=instruction.line_number if instruction else 0,
            message=message,
            **details,
        )
        self.diagnostics.append(diagnostic)
        logger.error(
            "%s@%d: %s",
            diagnostic.mnemonic,
            diagnostic.line_number,
            message,
            extra={"diagnostic": diagnostic.as_dict()},
        )
        self.kill()

    # ---- hooks and tracing ----

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except CabsiError:
            raise
        except Exception as exc:
            raise CabsiRuntimeError(
                f"Extension hook '{event}' failed: {exc}",
                instruction=self.current,
                rule="EXT",
            )

    def _log_step(self, instruction: Instruction) -> StepEntry:
        snapshot = list(self.stack) if self.verbose else None
        entry = self.trace.record(instruction=instruction, pointer=self.pointer, stack=snapshot)
        if self.verbose:
            logger.debug("step %d: %s | stack=%s", entry.step_index, instruction, render_stack(self.stack))
        return entry

    def _run_step_rules(self, instruction: Instruction, entry: StepEntry) -> None:
        try:
            self.hook_registry.after_step(
                self,
                StepContext(
                    step_index=entry.step_index,
                    line_number=instruction.line_number,
                    mnemonic=instruction.mnemonic,
                    extra=None,
                ),
            )
        except CabsiError:
            raise
        except Exception as exc:
            raise CabsiRuntimeError(
                f"Extension step rule failed: {exc}",
                instruction=instruction,
                rule="EXT",
            )

    # ---- default handlers ----

    def _op_push(self) -> None:
        for param in self.current.params:
            self.push(parse_literal(param))

    def _op_input(self) -> None:
        if not self.require(1):
            return
        prompt = self.pop()
        if self.input_source.interactive:
            # Piped input gets no prompt.
            self.output_sink(to_display(prompt))
        line = self.input_source.read_line()
        self.push(NULL if line is None else parse_literal(line))

    def _op_getc(self) -> None:
        ch = self.input_source.read_char()
        self.push(NULL if ch is None else make_str(ch))

    def _op_getl(self) -> None:
        line = self.input_source.read_line()
        self.push(NULL if line is None else make_str(line))

    def _op_getw(self) -> None:
        word = self.input_source.read_word()
        self.push(NULL if word is None else make_str(word))

    def _op_rot(self) -> None:
        if not self.require(3):
            return
        a, b, c = self.stack[-3:]
        self.stack[-3:] = [b, c, a]

    def _op_dup(self) -> None:
        if not self.require(1):
            return
        self.push(self.stack[-1])

    def _op_pop(self) -> None:
        if not self.require(1):
            return
        self.pop()

    def _op_swap(self) -> None:
        if not self.require(2):
            return
        a, b = self.stack[-2:]
        self.stack[-2:] = [b, a]

    def _op_over(self) -> None:
        if not self.require(2):
            return
        self.push(self.stack[-2])

    def _op_yeet(self) -> None:
        if not self.require(1):
            return
        self.registers.append(self.pop())

    def _op_yoink(self) -> None:
        if not self.require(1, stack=REGISTER):
            return
        self.push(self.registers.pop())

    def _op_size(self) -> None:
        self.push(make_int(len(self.stack)))

    def _op_rsize(self) -> None:
        self.push(make_int(len(self.registers)))

    def _op_goto(self) -> None:
        self.jump_to_line(self.line_target(self.param(0)))

    def _jump_when(self, predicate: Callable[[Union[int, float]], bool]) -> None:
        if not self.require(1):
            return
        top = self.stack[-1]
        if top.is_numeric and predicate(top.value):
            self.jump_to_line(self.line_target(self.param(0)))

    def _op_jp(self) -> None:
        self._jump_when(lambda v: v > 0)

    def _op_jnp(self) -> None:
        self._jump_when(lambda v: v <= 0)

    def _op_jn(self) -> None:
        self._jump_when(lambda v: v < 0)

    def _op_jnn(self) -> None:
        self._jump_when(lambda v: v >= 0)

    def _op_jz(self) -> None:
        self._jump_when(lambda v: v == 0)

    def _op_jnl(self) -> None:
        if not self.require(1):
            return
        if self.stack[-1].is_null:
            self.pop()
            self.jump_to_line(self.line_target(self.param(0)))

    def _op_gosub(self) -> None:
        target = self.line_target(self.param(0))
        self.call_stack.append(self.current.line_number)
        self.jump_to_line(target)

    def _op_return(self) -> None:
        if not self.require(1, stack=CALL):
            return
        return_line = self.call_stack.pop()
        self.jump_to_line(return_line + 1)

    def _unary(self, op: Callable[[Value], Value]) -> None:
        if not self.require(1):
            return
        result = op(self.stack[-1])
        self.stack[-1] = result

    def _binary(self, op: Callable[[Value, Value], Value]) -> None:
        if not self.require(2):
            return
        a, b = self.stack[-2:]
        result = op(a, b)
        del self.stack[-2:]
        self.push(result)

    def _op_inc(self) -> None:
        def inc(v: Value) -> Value:
            _expect_numbers("INC", v)
            return make_number(v.value + 1)

        self._unary(inc)

    def _op_dec(self) -> None:
        def dec(v: Value) -> Value:
            _expect_numbers("DEC", v)
            return make_number(v.value - 1)

        self._unary(dec)

    def _op_add(self) -> None:
        self._binary(_add)

    def _op_sub(self) -> None:
        self._binary(_sub)

    def _op_mul(self) -> None:
        self._binary(_mul)

    def _op_div(self) -> None:
        self._binary(_div)

    def _op_mod(self) -> None:
        self._binary(_mod)

    def _op_divmod(self) -> None:
        if not self.require(2):
            return
        a, b = self.stack[-2:]
        quotient, remainder = _div(a, b), _mod(a, b)
        del self.stack[-2:]
        self.push(quotient, remainder)

    def _op_makei(self) -> None:
        self._unary(to_int)

    def _op_makef(self) -> None:
        self._unary(to_float)

    def _op_makes(self) -> None:
        self._unary(to_text)

    def _op_ord(self) -> None:
        self._unary(code_point)

    def _op_chr(self) -> None:
        self._unary(from_code_point)

    def _op_eq(self) -> None:
        self._binary(lambda a, b: make_bool(_equals(a, b)))

    def _op_less(self) -> None:
        self._binary(_ordering("LESS", lambda a, b: a < b))

    def _op_more(self) -> None:
        self._binary(_ordering("MORE", lambda a, b: a > b))

    def _op_lesseq(self) -> None:
        self._binary(_ordering("LESSEQ", lambda a, b: a <= b))

    def _op_moreeq(self) -> None:
        self._binary(_ordering("MOREEQ", lambda a, b: a >= b))

    def _op_debug(self) -> None:
        instruction = self.current
        logger.info(
            "%d %s @%d stack=%s registers=%s",
            instruction.line_number,
            instruction.mnemonic,
            self.pointer,
            render_stack(self.stack),
            render_stack(self.registers),
        )

    def _op_exit(self) -> None:
        self.kill()

    def _op_print(self) -> None:
        if not self.require(1):
            return
        self.output_sink(to_display(self.pop()) + "\n")


Interpreter.DEFAULT_HANDLERS = {
    Opcode.PUSH: Interpreter._op_push,
    Opcode.INPUT: Interpreter._op_input,
    Opcode.GETC: Interpreter._op_getc,
    Opcode.GETL: Interpreter._op_getl,
    Opcode.GETW: Interpreter._op_getw,
    Opcode.ROT: Interpreter._op_rot,
    Opcode.DUP: Interpreter._op_dup,
    Opcode.POP: Interpreter._op_pop,
    Opcode.SWAP: Interpreter._op_swap,
    Opcode.OVER: Interpreter._op_over,
    Opcode.YEET: Interpreter._op_yeet,
    Opcode.YOINK: Interpreter._op_yoink,
    Opcode.SIZE: Interpreter._op_size,
    Opcode.RSIZE: Interpreter._op_rsize,
    Opcode.GOTO: Interpreter._op_goto,
    Opcode.JP: Interpreter._op_jp,
    Opcode.JNP: Interpreter._op_jnp,
    Opcode.JN: Interpreter._op_jn,
    Opcode.JNN: Interpreter._op_jnn,
    Opcode.JZ: Interpreter._op_jz,
    Opcode.GOSUB: Interpreter._op_gosub,
    Opcode.RETURN: Interpreter._op_return,
    Opcode.JNL: Interpreter._op_jnl,
    Opcode.INC: Interpreter._op_inc,
    Opcode.DEC: Interpreter._op_dec,
    Opcode.ADD: Interpreter._op_add,
    Opcode.SUB: Interpreter._op_sub,
    Opcode.MUL: Interpreter._op_mul,
    Opcode.DIV: Interpreter._op_div,
    Opcode.MOD: Interpreter._op_mod,
    Opcode.DIVMOD: Interpreter._op_divmod,
    Opcode.MAKEI: Interpreter._op_makei,
    Opcode.MAKEF: Interpreter._op_makef,
    Opcode.MAKES: Interpreter._op_makes,
    Opcode.ORD: Interpreter._op_ord,
    Opcode.CHR: Interpreter._op_chr,
    Opcode.DEBUG: Interpreter._op_debug,
    Opcode.EXIT: Interpreter._op_exit,
    Opcode.PRINT: Interpreter._op_print,
    Opcode.EQ: Interpreter._op_eq,
    Opcode.LESS: Interpreter._op_less,
    Opcode.MORE: Interpreter._op_more,
    Opcode.LESSEQ: Interpreter._op_lesseq,
    Opcode.MOREEQ: Interpreter._op_moreeq,
}


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def _instruction(self, error: CabsiError) -> Optional[Instruction]:
        if isinstance(error, CabsiRuntimeError) and error.instruction is not None:
            return error.instruction
        return self.interpreter.current

    def format_text(self, error: CabsiError, verbose: bool) -> str:
        interp = self.interpreter
        lines = ["Traceback (most recent call last):"]
        for return_line in interp.call_stack:
            lines.append(f"  File \"{interp.filename}\", line {return_line}, in GOSUB")
        instruction = self._instruction(error)
        if instruction is not None:
            lines.append(f"  File \"{interp.filename}\", line {instruction.line_number}, in {instruction.mnemonic}")
            lines.append(f"    {instruction.text}")
        last = interp.trace.last
        if last is not None:
            lines.append(f"    Step index: {last.step_index}")
        if verbose:
            lines.append(f"    Stack: {render_stack(interp.stack)}")
            lines.append(f"    Registers: {render_stack(interp.registers)}")
        message = getattr(error, "message", str(error))
        lines.append(f"{error.__class__.__name__}: {message}")
        return "\n".join(lines)

    def to_json(self, error: CabsiError) -> str:
        interp = self.interpreter
        instruction = self._instruction(error)
        last = interp.trace.last
        data: Dict[str, Any] = {
            "error": {
                "type": error.__class__.__name__,
                "message": getattr(error, "message", str(error)),
            },
            "file": interp.filename,
            "call_stack": list(interp.call_stack),
            "stack": [v.value for v in interp.stack],
            "registers": [v.value for v in interp.registers],
            "diagnostics": [d.as_dict() for d in interp.diagnostics],
        }
        if instruction is not None:
            data["instruction"] = {
                "line": instruction.line_number,
                "mnemonic": instruction.mnemonic,
                "params": list(instruction.params),
            }
        if last is not None:
            data["step_index"] = last.step_index
        if isinstance(error, CabsiParseError) and error.text is not None:
            data["error"]["text"] = error.text
        return json.dumps(data, indent=2)

"""Cabsi Extension: step tracer.

Behavior:
- Logs the operand stack every N executed steps (``CABSI_TRACE_EVERY``,
  default 1).
- Replaces DEBUG with a variant that also reports the call stack and writes
  the dump to the program output instead of the log.
- Logs a one-line summary when the program ends.
"""

from __future__ import annotations

import logging
import os

from extensions import ExtensionAPI, StepContext
from parser import render_stack


CABSI_EXTENSION_NAME = "tracer"
CABSI_EXTENSION_API_VERSION = 1

logger = logging.getLogger(__name__)


def _every() -> int:
    raw = os.environ.get("CABSI_TRACE_EVERY", "1")
    try:
        return max(1, int(raw))
    except ValueError:
        return 1


def _debug_to_output(interpreter) -> None:
    instruction = interpreter.current
    interpreter.output_sink(
        f"{instruction.line_number} {instruction.mnemonic} "
        f"stack={render_stack(interpreter.stack)} "
        f"registers={render_stack(interpreter.registers)} "
        f"calls={interpreter.call_stack}\n"
    )


def cabsi_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="tracer", version="0.1.0")
    ext.register_handler("DEBUG", _debug_to_output)

    @ext.every_n_steps(_every(), name="trace_stack")
    def _trace(interpreter, ctx: StepContext) -> None:
        logger.info("#%d %d %s %s", ctx.step_index, ctx.line_number, ctx.mnemonic, render_stack(interpreter.stack))

    @ext.on_event("program_end")
    def _summary(interpreter) -> None:
        logger.info(
            "finished after %d steps (killed=%s, stack depth %d)",
            interpreter.trace.next_step_index,
            interpreter.killed,
            len(interpreter.stack),
        )

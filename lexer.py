from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class CabsiError(Exception):
    """Base class for interpreter errors."""


class CabsiParseError(CabsiError):
    """Raised when a literal cannot be parsed."""

    def __init__(self, message: str, *, text: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.text = text


class Opcode(IntEnum):
    # stack population
    PUSH = 1
    INPUT = 2
    GETC = 3
    GETL = 4
    GETW = 5
    # stack manipulation
    ROT = 10  # A B C -> B C A
    DUP = 11
    POP = 12
    SWAP = 13
    OVER = 14
    YEET = 15  # operand -> register
    YOINK = 16  # register -> operand
    SIZE = 17
    RSIZE = 18
    # control flow
    GOTO = 20
    JP = 21
    JNP = 22
    JN = 23
    JNN = 24
    JZ = 25
    GOSUB = 26
    RETURN = 27
    JNL = 28
    # math
    INC = 30
    DEC = 31
    ADD = 32
    SUB = 33
    MUL = 34
    DIV = 35
    MOD = 36
    DIVMOD = 37
    # conversion
    MAKEI = 40
    MAKEF = 41
    MAKES = 42
    ORD = 43
    CHR = 44
    # misc
    DEBUG = 50
    EXIT = 51
    PRINT = 52
    # comparison
    EQ = 60
    LESS = 61
    MORE = 62
    LESSEQ = 63
    MOREEQ = 64


INSTRUCTIONS: Dict[str, Opcode] = {op.name: op for op in Opcode}


def lookup_opcode(mnemonic: str) -> Optional[Opcode]:
    return INSTRUCTIONS.get(mnemonic)


@dataclass(frozen=True)
class Instruction:
    line_number: int
    mnemonic: str
    opcode: Optional[Opcode]
    params: Tuple[str, ...]
    text: str = ""

    def __str__(self) -> str:
        return f"{self.line_number} {self.text or self.mnemonic}"


class Program(Sequence[Instruction]):
    """Instructions in ascending line-number order. Read-only."""

    def __init__(self, instructions: Sequence[Instruction]) -> None:
        self._instructions: Tuple[Instruction, ...] = tuple(
            sorted(instructions, key=lambda ins: ins.line_number)
        )

    def __getitem__(self, index):  # type: ignore[override]
        return self._instructions[index]

    def __len__(self) -> int:
        return len(self._instructions)

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self._instructions)

    @property
    def line_numbers(self) -> List[int]:
        return [ins.line_number for ins in self._instructions]

    def __repr__(self) -> str:
        return f"Program({len(self)} instructions)"


_LINE_RE = re.compile(r"^(\d+)\s*(\w+)(?:\s+(.*?))?(?:\s*REM .*)?$")
_QUOTED_RE = re.compile(r'"(""|[^"])+?"')


def split_params(params: Optional[str]) -> List[str]:
    """Split a parameter list on commas, keeping quoted runs intact.

    A quoted run is matched whole before any single character is consumed,
    so a comma inside quotes never separates fields. ``""`` inside quotes is
    an embedded quote. Fields are trimmed and empty fields dropped.
    """
    if not params:
        return []
    fields: List[str] = []
    build: List[str] = []
    i = 0
    n = len(params)
    while i < n:
        match = _QUOTED_RE.match(params, i)
        if match:
            build.append(match.group(0))
            i = match.end()
        else:
            ch = params[i]
            i += 1
            if ch == ",":
                fields.append("".join(build))
                build = []
                continue
            build.append(ch)
    fields.append("".join(build))
    return [field.strip() for field in fields if field.strip()]


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename

    def tokenize(self) -> Program:
        collected: Dict[int, Instruction] = {}
        for raw in re.split(r"\r?\n", self.text):
            instruction = self._tokenize_line(raw.lstrip())
            if instruction is None:
                continue
            # Later definitions of a line replace earlier ones.
            collected[instruction.line_number] = instruction
        return Program(list(collected.values()))

    def _tokenize_line(self, line: str) -> Optional[Instruction]:
        match = _LINE_RE.match(line)
        if match is None:
            return None
        number, mnemonic, params = match.group(1), match.group(2), match.group(3)
        opcode = lookup_opcode(mnemonic)
        if opcode is None:
            logger.warning("Unknown instruction %s at %s:%s", mnemonic, self.filename, number)
        statement = f"{mnemonic} {params}" if params else mnemonic
        return Instruction(
            line_number=int(number, 10),
            mnemonic=mnemonic,
            opcode=opcode,
            params=tuple(split_params(params)),
            text=statement,
        )


def tokenize(text: str, filename: str = "<string>") -> Program:
    return Lexer(text, filename).tokenize()

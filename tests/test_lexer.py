from __future__ import annotations

import logging

from lexer import INSTRUCTIONS, Opcode, split_params, tokenize


def test_split_keeps_comma_inside_quotes():
    assert split_params('"a,b",c') == ['"a,b"', "c"]


def test_split_trims_and_drops_empty_fields():
    assert split_params(" 1 , ,2,") == ["1", "2"]
    assert split_params("") == []
    assert split_params(None) == []


def test_split_keeps_doubled_quotes_verbatim():
    assert split_params('"say ""hi"", ok",3') == ['"say ""hi"", ok"', "3"]


def test_program_sorted_by_line_number():
    program = tokenize("30 PRINT\n10 PUSH 1\n20 DUP\n")
    assert [ins.line_number for ins in program] == [10, 20, 30]
    assert [ins.opcode for ins in program] == [Opcode.PUSH, Opcode.DUP, Opcode.PRINT]


def test_numeric_sort_not_lexical():
    program = tokenize("100 EXIT\n9 PUSH 1\n")
    assert program.line_numbers == [9, 100]


def test_duplicate_line_last_one_wins():
    program = tokenize("10 PUSH 1\n10 PUSH 2\n")
    assert len(program) == 1
    assert program[0].params == ("2",)


def test_insignificant_lines_dropped():
    source = "\n   \nhello world\n  20 PUSH 1\nPRINT\n"
    program = tokenize(source)
    assert program.line_numbers == [20]


def test_rem_comment_discarded():
    program = tokenize('10 PUSH 1, 2 REM two numbers\n20 PRINT REM show it')
    assert program[0].params == ("1", "2")
    assert program[1].params == ()
    assert program[1].mnemonic == "PRINT"


def test_crlf_line_endings():
    program = tokenize("10 PUSH 1\r\n20 PRINT\r\n")
    assert program.line_numbers == [10, 20]
    assert program[0].params == ("1",)


def test_unknown_mnemonic_is_recorded(caplog):
    with caplog.at_level(logging.WARNING):
        program = tokenize("10 FROB 1\n20 PRINT")
    assert program[0].mnemonic == "FROB"
    assert program[0].opcode is None
    assert program[1].opcode is Opcode.PRINT
    assert "Unknown instruction FROB" in caplog.text


def test_registry_covers_all_opcodes():
    assert INSTRUCTIONS["GOSUB"] is Opcode.GOSUB
    assert INSTRUCTIONS["YEET"] is Opcode.YEET
    assert "NOPE" not in INSTRUCTIONS
    assert len(INSTRUCTIONS) == len(Opcode)

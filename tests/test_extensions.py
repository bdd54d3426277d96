from __future__ import annotations

import logging
from pathlib import Path

import pytest

from console import BufferSink
from extensions import (
    CabsiExtensionError,
    ExtensionAPI,
    RuntimeServices,
    as_opcode,
    gather_extension_paths,
    load_runtime_services,
    read_cabx,
)
from interpreter import CabsiRuntimeError, Interpreter
from lexer import Opcode

TRACER = Path(__file__).resolve().parents[1] / "ext" / "tracer.py"


def make(source: str, services: RuntimeServices) -> Interpreter:
    return Interpreter.from_source(source, output_sink=BufferSink(), services=services)


def test_as_opcode_accepts_names_and_numbers():
    assert as_opcode("print") is Opcode.PRINT
    assert as_opcode(52) is Opcode.PRINT
    assert as_opcode(Opcode.DUP) is Opcode.DUP
    with pytest.raises(CabsiExtensionError):
        as_opcode("FROB")
    with pytest.raises(CabsiExtensionError):
        as_opcode(999)


def test_registered_handler_becomes_override():
    services = RuntimeServices()
    api = ExtensionAPI(services=services, ext_name="upper")

    @api.opcode("PRINT")
    def loud(vm):
        vm.output_sink(str(vm.pop()).upper())

    interp = make('10 PUSH "hi"\n20 PRINT\n', services)
    interp.run()
    assert interp.output_sink.getvalue() == "HI"
    assert services.handlers[Opcode.PRINT] == (loud, "upper")


def test_conflicting_overrides_rejected():
    services = RuntimeServices()
    ExtensionAPI(services=services, ext_name="a").register_handler("PRINT", lambda vm: None)
    with pytest.raises(CabsiExtensionError, match="already overridden by extension 'a'"):
        ExtensionAPI(services=services, ext_name="b").register_handler("PRINT", lambda vm: None)


def test_events_fire_in_priority_order():
    services = RuntimeServices()
    api = ExtensionAPI(services=services, ext_name="events")
    calls = []
    api.on_event("program_start", lambda vm: calls.append("low"), priority=0)
    api.on_event("program_start", lambda vm: calls.append("high"), priority=10)
    api.on_event("before_step", lambda vm, ins: calls.append(ins.mnemonic))
    api.on_event("program_end", lambda vm: calls.append("end"))

    make("10 PUSH 1\n20 POP\n", services).run()
    assert calls == ["high", "low", "PUSH", "POP", "end"]


def test_unknown_event_rejected():
    api = ExtensionAPI(services=RuntimeServices(), ext_name="x")
    with pytest.raises(CabsiExtensionError):
        api.on_event("on_tuesday", lambda vm: None)


def test_every_n_steps():
    services = RuntimeServices()
    api = ExtensionAPI(services=services, ext_name="sampler")
    seen = []

    @api.every_n_steps(2)
    def sample(vm, ctx):
        seen.append((ctx.step_index, ctx.line_number))

    make("10 PUSH 1\n20 PUSH 2\n30 PUSH 3\n40 PUSH 4\n", services).run()
    assert seen == [(0, 10), (2, 30)]


def test_every_n_steps_rejects_zero():
    api = ExtensionAPI(services=RuntimeServices(), ext_name="x")
    with pytest.raises(CabsiExtensionError):
        api.every_n_steps(0, lambda vm, ctx: None)


def test_failing_hook_is_wrapped():
    services = RuntimeServices()
    api = ExtensionAPI(services=services, ext_name="broken")
    api.on_event("after_step", lambda vm, ins: 1 / 0)
    errors = []
    api.on_event("on_error", lambda vm, exc: errors.append(exc))

    interp = make("10 PUSH 1\n", services)
    with pytest.raises(CabsiRuntimeError, match="Extension hook 'after_step' failed"):
        interp.run()
    assert len(errors) == 1


def test_load_tracer_extension(monkeypatch, caplog):
    monkeypatch.setenv("CABSI_TRACE_EVERY", "2")
    services = load_runtime_services([str(TRACER)])
    assert [m.name for m in services.metadata] == ["tracer"]
    assert Opcode.DEBUG in services.handlers

    interp = make("10 PUSH 1\n20 GOSUB 100\n30 EXIT\n100 DEBUG\n110 RETURN\n", services)
    with caplog.at_level(logging.INFO):
        interp.run()
    assert interp.output_sink.getvalue() == "100 DEBUG stack=[1] registers=[] calls=[20]\n"
    assert "killed=True" in caplog.text


def test_cabx_pointer_file(tmp_path):
    ext = tmp_path / "noop.py"
    ext.write_text(
        "CABSI_EXTENSION_NAME = 'noop'\n"
        "def cabsi_register(ext):\n"
        "    ext.metadata(name='noop', version='1.0')\n"
    )
    (tmp_path / "bundle.cabx").write_text("# extensions\nnoop.py  # inline comment\n\n")

    assert read_cabx(str(tmp_path / "bundle.cabx")) == [str(ext)]
    assert gather_extension_paths([str(tmp_path / "bundle.cabx")]) == [str(ext)]
    services = load_runtime_services([str(tmp_path / "bundle.cabx")])
    assert services.metadata[0].version == "1.0"


def test_missing_register_function(tmp_path):
    ext = tmp_path / "empty.py"
    ext.write_text("X = 1\n")
    with pytest.raises(CabsiExtensionError, match="cabsi_register"):
        load_runtime_services([str(ext)])


def test_api_version_mismatch(tmp_path):
    ext = tmp_path / "future.py"
    ext.write_text("CABSI_EXTENSION_API_VERSION = 99\ndef cabsi_register(ext):\n    pass\n")
    with pytest.raises(CabsiExtensionError, match="requires API 99"):
        load_runtime_services([str(ext)])


def test_missing_extension_path(tmp_path):
    with pytest.raises(CabsiExtensionError):
        load_runtime_services([str(tmp_path / "nope.py")])

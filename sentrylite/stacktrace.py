"""Stack trace frames in the event payload format, and helpers to build them."""

from __future__ import annotations

import inspect
import sys
import sysconfig
from dataclasses import dataclass, field, fields
from types import FrameType
from typing import Any

UNKNOWN = "unknown"

SDK_MODULE = "sentrylite"
_INTERNAL_MODULES = frozenset({"runtime", "testing"})

_STDLIB_ROOT = sysconfig.get_paths()["stdlib"].replace("\\", "/")


@dataclass
class Frame:
    """One function call in a stack trace."""

    function: str = ""
    symbol: str = ""
    module: str = ""
    filename: str = ""
    abs_path: str = ""
    lineno: int = 0
    colno: int = 0
    pre_context: list[str] = field(default_factory=list)
    context_line: str = ""
    post_context: list[str] = field(default_factory=list)
    in_app: bool = False
    vars: dict[str, Any] = field(default_factory=dict)
    package: str = ""
    instruction_addr: str = ""
    addr_mode: str = ""
    symbol_addr: str = ""
    image_addr: str = ""
    platform: str = ""
    stack_start: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready mapping; empty fields are left out, in_app never."""
        result: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name == "in_app":
                result[item.name] = value
            elif value:
                if isinstance(value, list):
                    value = list(value)
                elif isinstance(value, dict):
                    value = dict(value)
                result[item.name] = value
        return result


@dataclass
class Stacktrace:
    """The frames of a stack, outermost call first."""

    frames: list[Frame] = field(default_factory=list)
    frames_omitted: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready mapping, leaving out empty lists."""
        result: dict[str, Any] = {}
        if self.frames:
            result["frames"] = [frame.to_dict() for frame in self.frames]
        if self.frames_omitted:
            result["frames_omitted"] = list(self.frames_omitted)
        return result


@dataclass(frozen=True)
class RawFrame:
    """A frame as collected at run time.

    ``function`` is qualified with its package path unless ``module`` is given,
    in which case ``function`` is taken as the plain function name.
    """

    function: str = ""
    file: str = ""
    line: int = 0
    module: str | None = None


def is_compiler_generated_symbol(name: str) -> bool:
    """Return True for symbols that belong to no package."""
    return name.startswith(("go:", "type:"))


def package_name(name: str) -> str:
    """Return the package part of a qualified symbol name, or ""."""
    if is_compiler_generated_symbol(name):
        return ""
    path_end = max(name.rfind("/"), 0)
    dot = name.find(".", path_end)
    return name[:dot] if dot != -1 else ""


def base_name(name: str) -> str:
    """Return the symbol name without its package or receiver."""
    return name.rpartition(".")[2]


def split_qualified_function_name(name: str) -> tuple[str, str]:
    """Split a qualified function name into (package, function)."""
    pkg = package_name(name)
    if not pkg:
        return "", ""
    return pkg, name[len(pkg) + 1:]


def is_abs_path(path: str) -> bool:
    """Tell whether a path is absolute in POSIX or Windows form, on any platform."""
    if not path:
        return False
    if path[0] in "/\\":
        return True
    return len(path) >= 3 and path[1] == ":" and path[2] in "/\\"


def should_skip_frame(module: str) -> bool:
    """Tell whether a frame from this module is internal and not reported."""
    if module in _INTERNAL_MODULES:
        return True
    return module.startswith(SDK_MODULE) and not module.endswith("_test")


def _is_in_app(frame: Frame) -> bool:
    return not (
        frame.abs_path.startswith(_STDLIB_ROOT)
        or "vendor" in frame.module
        or "third_party" in frame.module
    )


def new_frame(module: str, function: str, file: str, line: int) -> Frame:
    """Build a frame, placing ``file`` as filename or abs_path as appropriate."""
    frame = Frame(lineno=line, module=module, function=function)
    if not file:
        frame.filename = UNKNOWN
    elif is_abs_path(file):
        frame.abs_path = file
    else:
        frame.filename = file
    frame.in_app = _is_in_app(frame)
    return frame


def _module_and_function(raw: RawFrame) -> tuple[str, str]:
    if raw.module is not None:
        return raw.module, raw.function
    if raw.function:
        return split_qualified_function_name(raw.function)
    return "", raw.function


def frame_from_raw(raw: RawFrame) -> Frame:
    """Build a frame from a run-time frame."""
    module, function = _module_and_function(raw)
    return new_frame(module, function, raw.file, raw.line)


def create_frames(frames: list[RawFrame]) -> list[Frame]:
    """Build frames, dropping those internal to the runtime or this package."""
    result = []
    for raw in frames:
        module, function = _module_and_function(raw)
        if not should_skip_frame(module):
            result.append(new_frame(module, function, raw.file, raw.line))
    return result


def _module_name(frame: FrameType) -> str:
    module = inspect.getmodule(frame)
    return module.__name__ if module is not None else ""


def _raw_from_frame(frame: FrameType, line: int) -> RawFrame:
    code = frame.f_code
    return RawFrame(
        function=getattr(code, "co_qualname", code.co_name),
        file=code.co_filename,
        line=line,
        module=_module_name(frame),
    )


def new_stacktrace() -> Stacktrace | None:
    """Capture the current call stack."""
    raw = []
    frame: FrameType | None = sys._getframe()
    while frame is not None:
        raw.append(_raw_from_frame(frame, frame.f_lineno))
        frame = frame.f_back
    if not raw:
        return None
    raw.reverse()
    return Stacktrace(frames=create_frames(raw))


def extract_stacktrace(error: BaseException) -> Stacktrace | None:
    """Build a stack trace from an exception's traceback, or None if it has none."""
    raw = []
    tb = getattr(error, "__traceback__", None)
    while tb is not None:
        raw.append(_raw_from_frame(tb.tb_frame, tb.tb_lineno))
        tb = tb.tb_next
    if not raw:
        return None
    return Stacktrace(frames=create_frames(raw))
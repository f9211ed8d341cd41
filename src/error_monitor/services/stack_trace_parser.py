"""
Stack trace parsing service for the Error Monitor.

Turns an arbitrary stack trace blob into a structured, language-tagged
``ParsedStackTrace``: detects the source language, extracts call frames with a
language-specific extractor, flags first-party frames and pulls the error
type and message out of the first line.
"""

import re
from typing import Callable, Dict, List, Optional, Pattern, Tuple

from ..constants import STACK_TRACE
from ..models import Language, ParsedStackTrace, StackFrame


# Language detection, evaluated top to bottom; first match wins.
_JS_DETECT = re.compile(r"at\s+.*\s+\(.*\.(?:ts|js|tsx|jsx):\d+:\d+\)")
_PYTHON_DETECT = re.compile(r'File ".*\.py", line \d+')
_GO_FILE_DETECT = re.compile(r"\.go:\d+")
_GO_MARKER_DETECT = re.compile(r"goroutine")
_JAVA_DETECT = re.compile(r"at\s+[\w.$]+\([\w.]+\.java:\d+\)")
_CSHARP_DETECT = re.compile(r"at\s+[\w.<>`]+(?:\([^)]*\))?\s+in\s+.*\.cs:line\s+\d+")
_RUBY_DETECT = re.compile(r"\.rb:\d+:in `")
_RUST_FILE_DETECT = re.compile(r"\.rs:\d+:\d+")
_RUST_MARKER_DETECT = re.compile(r"thread '.*' panicked")

# Frame extraction
_JS_FRAME = re.compile(
    r"at\s+(?:async\s+)?(?:(?:(\w+(?:\.\w+)*)\.)?([\w$<>]+)\s+)?\(?"
    r"((?:[A-Za-z]:)?[^():\s][^():]*\.(?:ts|js|tsx|jsx|mjs|cjs)):(\d+):(\d+)\)?"
)
_PYTHON_FRAME = re.compile(r'File "([^"]+\.py)", line (\d+)(?:, in ([\w<>.]+))?')
_GO_FRAME = re.compile(r"([^\s]+\.go):(\d+)")
_GO_FUNCTION = re.compile(r"^([\w./*()\-]+)\(([^()]*)\)$")
_JAVA_FRAME = re.compile(r"at\s+([\w.$]+)\.([\w$<>]+)\(([\w.]+):(\d+)\)")
_GENERIC_FRAME = re.compile(r"([^\s:()]+\.\w+):(\d+)")

# Error type / message on the first line
_JS_ERROR_LINE = re.compile(r"^(\w+Error):\s*(.+)$")
_PYTHON_ERROR_LINE = re.compile(r"^([\w.]+Error|[\w.]+Exception):\s*(.+)$")

_VENDOR_PATH_PATTERNS: Tuple[Pattern, ...] = tuple(
    re.compile(marker) for marker in STACK_TRACE.VENDOR_PATH_MARKERS
)
_VENDOR_QUALIFIER_PATTERNS: Tuple[Pattern, ...] = tuple(
    re.compile(marker) for marker in STACK_TRACE.VENDOR_QUALIFIER_MARKERS
)


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def is_first_party(path: str, qualifier: Optional[str] = None) -> bool:
    """
    Decide whether a frame belongs to the application rather than vendor code.

    Args:
        path: File path as it appeared in the trace
        qualifier: Optional class/package qualifier (JVM frames)

    Returns:
        False if the path or qualifier matches any vendor marker
    """
    for candidate in (path, qualifier):
        if not candidate:
            continue
        if any(pattern.search(candidate) for pattern in _VENDOR_PATH_PATTERNS):
            return False
    if qualifier and any(pattern.search(qualifier) for pattern in _VENDOR_QUALIFIER_PATTERNS):
        return False
    return True


def detect_language(raw_text: str) -> Language:
    """Detect the source language of a stack trace; precedence is fixed."""
    js_match = _JS_DETECT.search(raw_text)
    if js_match:
        return Language.TYPESCRIPT if ".ts" in js_match.group(0) else Language.JAVASCRIPT

    if _PYTHON_DETECT.search(raw_text):
        return Language.PYTHON

    if _GO_FILE_DETECT.search(raw_text) and _GO_MARKER_DETECT.search(raw_text):
        return Language.GO

    if _JAVA_DETECT.search(raw_text):
        return Language.JAVA

    if _CSHARP_DETECT.search(raw_text):
        return Language.CSHARP

    if _RUBY_DETECT.search(raw_text):
        return Language.RUBY

    if _RUST_FILE_DETECT.search(raw_text) and _RUST_MARKER_DETECT.search(raw_text):
        return Language.RUST

    return Language.UNKNOWN


def extract_javascript_frames(raw_text: str) -> List[StackFrame]:
    """Frames shaped like ``at Class.fn (path/file.ts:line:col)`` or ``at path/file.js:line:col``."""
    frames = []
    for line in raw_text.splitlines():
        match = _JS_FRAME.search(line)
        if not match:
            continue
        class_name, function_name, file_path, line_num, col_num = match.groups()
        frames.append(StackFrame(
            file_path=file_path,
            line_number=_to_int(line_num),
            column_number=_to_int(col_num),
            function_name=function_name,
            class_name=class_name,
            is_first_party=is_first_party(file_path),
        ))
    return frames


def extract_python_frames(raw_text: str) -> List[StackFrame]:
    """Frames shaped like ``File "path.py", line N, in function``."""
    frames = []
    for line in raw_text.splitlines():
        match = _PYTHON_FRAME.search(line)
        if not match:
            continue
        file_path, line_num, function_name = match.groups()
        frames.append(StackFrame(
            file_path=file_path,
            line_number=_to_int(line_num),
            function_name=function_name,
            is_first_party=is_first_party(file_path),
        ))
    return frames


def extract_go_frames(raw_text: str) -> List[StackFrame]:
    """Goroutine dumps: a ``pkg.Func(args)`` line followed by ``path.go:N +0x..``."""
    frames = []
    current_function: Optional[str] = None

    for line in raw_text.splitlines():
        func_match = _GO_FUNCTION.match(line.strip())
        if func_match:
            current_function = func_match.group(1)
            continue

        match = _GO_FRAME.search(line)
        if not match:
            continue
        file_path, line_num = match.groups()

        function_name = class_name = None
        if current_function:
            qualifier, _, function_name = current_function.rpartition(".")
            class_name = qualifier or None
        frames.append(StackFrame(
            file_path=file_path,
            line_number=_to_int(line_num),
            function_name=function_name,
            class_name=class_name,
            is_first_party=is_first_party(file_path),
        ))
        current_function = None

    return frames


def extract_java_frames(raw_text: str) -> List[StackFrame]:
    """Frames shaped like ``at pkg.Class.method(File.java:N)``; classified by class qualifier."""
    frames = []
    for line in raw_text.splitlines():
        match = _JAVA_FRAME.search(line)
        if not match:
            continue
        class_name, method_name, file_name, line_num = match.groups()
        frames.append(StackFrame(
            file_path=file_name,
            line_number=_to_int(line_num),
            function_name=method_name,
            class_name=class_name,
            is_first_party=is_first_party("", class_name),
        ))
    return frames


def extract_generic_frames(raw_text: str) -> List[StackFrame]:
    """Any ``file.ext:line`` token anywhere in a line, de-duplicated by path."""
    frames = []
    seen = set()
    for line in raw_text.splitlines():
        for match in _GENERIC_FRAME.finditer(line):
            file_path, line_num = match.groups()
            if file_path in seen:
                continue
            seen.add(file_path)
            frames.append(StackFrame(
                file_path=file_path,
                line_number=_to_int(line_num),
                is_first_party=is_first_party(file_path),
            ))
    return frames


FrameExtractor = Callable[[str], List[StackFrame]]

# Every Language member must appear here.
FRAME_EXTRACTORS: Dict[Language, FrameExtractor] = {
    Language.TYPESCRIPT: extract_javascript_frames,
    Language.JAVASCRIPT: extract_javascript_frames,
    Language.PYTHON: extract_python_frames,
    Language.GO: extract_go_frames,
    Language.JAVA: extract_java_frames,
    Language.CSHARP: extract_generic_frames,
    Language.RUBY: extract_generic_frames,
    Language.RUST: extract_generic_frames,
    Language.UNKNOWN: extract_generic_frames,
}


def extract_error_info(
    raw_text: str,
    provided_message: Optional[str] = None
) -> Tuple[Optional[str], str]:
    """
    Pull the error type and message out of the first non-empty line.

    Returns:
        (error_type, error_message); error_type is None when the line does not
        look like ``SomeError: message``
    """
    first_line = next((line.strip() for line in raw_text.splitlines() if line.strip()), "")

    for pattern in (_JS_ERROR_LINE, _PYTHON_ERROR_LINE):
        match = pattern.match(first_line)
        if match:
            return match.group(1), match.group(2)

    if provided_message is not None:
        return None, provided_message
    return None, first_line


class StackTraceParser:
    """Parses raw stack traces from various programming languages."""

    def parse(self, raw_text: Optional[str], provided_message: Optional[str] = None) -> ParsedStackTrace:
        """
        Parse a raw stack trace into a structured trace.

        Args:
            raw_text: Raw stack trace text (may be empty)
            provided_message: Error message recorded alongside the trace

        Returns:
            Parsed stack trace; unrecognised input yields Language.UNKNOWN
        """
        raw_text = raw_text or ""
        language = detect_language(raw_text)
        frames = FRAME_EXTRACTORS.get(language, extract_generic_frames)(raw_text)
        error_type, error_message = extract_error_info(raw_text, provided_message)

        return ParsedStackTrace(
            raw=raw_text,
            frames=tuple(frames),
            language=language,
            error_message=error_message,
            error_type=error_type,
        )

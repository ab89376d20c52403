"""Child-process side of the script action.

Reads ``{"code": ..., "context": ...}`` as JSON on stdin, runs the code as
the body of ``def script(console, context)`` and writes one JSON object to
stdout: ``{"ok": true, "result": <json text or null>, "lines": [...]}`` or
``{"ok": false, "error": "..."}``.

Only the standard library is imported here so the child starts fast.
"""

import builtins
import datetime
import json
import math
import re
import sys
import textwrap

SAFE_BUILTINS = {
    name: getattr(builtins, name)
    for name in (
        "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter",
        "float", "format", "int", "isinstance", "len", "list", "map", "max",
        "min", "next", "range", "repr", "reversed", "round", "set", "sorted",
        "str", "sum", "tuple", "zip", "True", "False", "None",
        "Exception", "ValueError", "TypeError", "KeyError", "IndexError",
        "RuntimeError",
    )
}


class ScriptConsole:
    """Collects script output lines."""

    def __init__(self):
        self.lines = []

    @staticmethod
    def _join(args) -> str:
        return " ".join(a if isinstance(a, str) else json.dumps(a, default=str) for a in args)

    def log(self, *args) -> None:
        self.lines.append(self._join(args))

    def warn(self, *args) -> None:
        self.lines.append(f"WARN: {self._join(args)}")

    def error(self, *args) -> None:
        self.lines.append(f"ERROR: {self._join(args)}")


def compile_script(code: str):
    """Compile ``code`` as a function body and return the function."""
    body = textwrap.indent(textwrap.dedent(code), "    ") or "    pass"
    source = f"def script(console, context):\n{body}\n    pass\n"
    namespace = {
        "__builtins__": dict(SAFE_BUILTINS),
        "json": json,
        "math": math,
        "re": re,
        "datetime": datetime,
    }
    exec(compile(source, "<script>", "exec"), namespace)
    return namespace["script"]


def run(request: dict) -> dict:
    try:
        func = compile_script(request["code"])
    except SyntaxError as exc:
        # line 1 of the compiled source is the def header
        line = (exc.lineno or 1) - 1
        return {"ok": False, "error": f"{exc.msg} (line {max(line, 1)})"}

    console = ScriptConsole()
    try:
        result = func(console, request.get("context") or {})
    except Exception as exc:
        return {"ok": False, "error": str(exc)}

    return {
        "ok": True,
        "result": None if result is None else json.dumps(result, default=str),
        "lines": console.lines,
    }


def main() -> None:
    request = json.load(sys.stdin)
    sys.stdout.write(json.dumps(run(request)))


if __name__ == "__main__":
    main()

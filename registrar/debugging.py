import textwrap
from typing import Any


class Debugger:
    """
    Receives a callback for every SQL statement executed and every cascade plan
    applied. The base class ignores them; subclass it to record or display them.
    """

    def execute(self, sql: str, values: Any) -> None:
        pass

    def cascade(self, plan: Any) -> None:
        pass


class PrintDebugger(Debugger):
    def execute(self, sql: str, values: Any) -> None:
        self._print("Execute", sql, f"Values: {values!r}")

    def cascade(self, plan: Any) -> None:
        self._print("Cascade", str(plan), f"Origin: {plan.origin!r}")

    def _print(self, title: str, body: str, footer: str) -> None:
        print()
        print("=== SQL DEBUGGER ===")
        print(f"{title}:")
        print()
        print(textwrap.indent(body, "  "))
        print()
        print(textwrap.indent(footer, "  "))
        print()
        print("=== END SQL DEBUGGER ===")

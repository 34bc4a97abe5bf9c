"""Name → IR value bindings for one function body.

A `Scope` lives for exactly one function generation. Loop induction variables
temporarily shadow an outer binding through `shadow()`/`restore()`; the
returned `Shadowed` records whether there was anything to put back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from llvmlite import ir  # type: ignore


@dataclass(frozen=True)
class Shadowed:
    name: str
    previous: Optional[ir.Value]
    existed: bool


@dataclass
class Scope:
    values: Dict[str, ir.Value] = field(default_factory=dict)

    def bind(self, name: str, value: ir.Value) -> None:
        self.values[name] = value

    def lookup(self, name: str) -> Optional[ir.Value]:
        """Current value of `name`, or None; callers raise the user-facing error."""
        return self.values.get(name)

    def has(self, name: str) -> bool:
        return name in self.values

    def shadow(self, name: str, value: ir.Value) -> Shadowed:
        saved = Shadowed(name=name, previous=self.values.get(name), existed=self.has(name))
        self.values[name] = value
        return saved

    def restore(self, saved: Shadowed) -> None:
        if saved.existed:
            self.values[saved.name] = saved.previous
        else:
            self.values.pop(saved.name, None)

    def clear(self) -> None:
        self.values.clear()

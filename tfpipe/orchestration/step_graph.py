from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

import yaml

from ..infra.errors import StepGraphError


@dataclass(frozen=True)
class TextField:
    key: str
    text: str
    required: bool = True
    hint: str = ""

    def to_pipeline(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"text": self.text, "key": self.key, "required": self.required}
        if self.hint:
            out["hint"] = self.hint
        return out


@dataclass(frozen=True)
class CommandStep:
    key: str
    label: str
    command: str
    depends_on: Tuple[str, ...] = ()
    env: Dict[str, str] = field(default_factory=dict)
    concurrency_group: str = ""
    soft_fail: bool = False
    artifact_paths: Tuple[str, ...] = ()

    def to_pipeline(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"label": self.label, "key": self.key, "command": self.command}
        if self.depends_on:
            out["depends_on"] = list(self.depends_on)
        if self.env:
            out["env"] = dict(self.env)
        if self.concurrency_group:
            out["concurrency"] = 1
            out["concurrency_group"] = self.concurrency_group
        if self.soft_fail:
            out["soft_fail"] = True
        if self.artifact_paths:
            out["artifact_paths"] = list(self.artifact_paths)
        return out


@dataclass(frozen=True)
class BlockStep:
    """Manual approval barrier, evaluated by the CI orchestrator."""

    key: str
    label: str
    prompt: str = ""
    fields: Tuple[TextField, ...] = ()
    depends_on: Tuple[str, ...] = ()

    def to_pipeline(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"block": self.label, "key": self.key}
        if self.prompt:
            out["prompt"] = self.prompt
        if self.fields:
            out["fields"] = [f.to_pipeline() for f in self.fields]
        if self.depends_on:
            out["depends_on"] = list(self.depends_on)
        return out


Step = Union[CommandStep, BlockStep]


class StepGraph:
    """Ordered pipeline steps with explicit dependency edges.

    ``add`` only accepts dependencies on steps that are already present, so
    the graph is acyclic and topologically ordered by construction.
    """

    def __init__(self) -> None:
        self._steps: "OrderedDict[str, Step]" = OrderedDict()

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps.values())

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, key: str) -> bool:
        return key in self._steps

    def add(self, step: Step) -> Step:
        if not step.key:
            raise StepGraphError("step key must not be empty")
        if step.key in self._steps:
            raise StepGraphError(f"duplicate step key: {step.key}")
        unknown = [d for d in step.depends_on if d not in self._steps]
        if unknown:
            raise StepGraphError(f"step {step.key} depends on unknown step(s): {unknown}")
        self._steps[step.key] = step
        return step

    def get(self, key: str) -> Step:
        try:
            return self._steps[key]
        except KeyError:
            raise StepGraphError(f"no such step: {key}")

    def find(self, key: str) -> Optional[Step]:
        return self._steps.get(key)

    def keys(self) -> List[str]:
        return list(self._steps)

    def block_steps(self) -> List[BlockStep]:
        return [s for s in self._steps.values() if isinstance(s, BlockStep)]

    def ancestors(self, key: str) -> Set[str]:
        """Every step that must finish before ``key`` may start."""
        seen: Set[str] = set()
        stack = list(self.get(key).depends_on)
        while stack:
            k = stack.pop()
            if k in seen:
                continue
            seen.add(k)
            stack.extend(self._steps[k].depends_on)
        return seen

    def to_pipeline(self) -> Dict[str, Any]:
        return {"steps": [s.to_pipeline() for s in self._steps.values()]}

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_pipeline(), sort_keys=False, default_flow_style=False)

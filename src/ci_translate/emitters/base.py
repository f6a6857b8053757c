"""Base class for target emitters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar

from ci_translate.diagnostics.errors import Diagnostic
from ci_translate.ir.graph import FeatureComment, PipelineGraph
from ci_translate.vendors import Vendor


@dataclass(frozen=True)
class EmitResult:
    """Target document text and the diagnostics raised while writing it."""

    text: str
    diagnostics: tuple[Diagnostic, ...] = ()


class TargetEmitter(ABC):
    """Serialize an annotated pipeline graph into one target dialect."""

    vendor: ClassVar[Vendor]

    @abstractmethod
    def emit(self, graph: PipelineGraph) -> EmitResult:
        """Write the graph as a target document.

        Jobs that cannot satisfy a target invariant are written as skipped
        placeholder steps and reported, so the document is always complete.
        """


def render_comment(comment: FeatureComment) -> list[str]:
    """Render a degradation record as YAML comment lines.

    Examples
    --------
        >>> render_comment(FeatureComment("timeout", "approximate", "30 minutes"))
        ['# timeout (approximate): 30 minutes']

    """
    lines = [f"# {comment.feature} ({comment.confidence}): {_one_line(comment.summary)}"]
    if comment.instruction:
        lines.append(f"#   action: {_one_line(comment.instruction)}")
    return lines


def _one_line(text: str) -> str:
    return " ".join(text.split())

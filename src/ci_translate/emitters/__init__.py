"""Target emitters: annotated IR to target pipeline text."""

from typing import Any

from ci_translate.emitters.base import EmitResult, TargetEmitter, render_comment
from ci_translate.emitters.buildkite import BuildkiteEmitter
from ci_translate.emitters.yaml_writer import PipelineDumper, dump_document
from ci_translate.vendors import Vendor

EMITTERS: dict[Vendor, type[TargetEmitter]] = {
    Vendor.BUILDKITE: BuildkiteEmitter,
}


def get_emitter(vendor: Vendor, **options: Any) -> TargetEmitter:
    """Create an emitter for a target vendor.

    Raises
    ------
        ValueError: If the vendor cannot be used as a translation target.

    """
    emitter_class = EMITTERS.get(vendor)
    if emitter_class is None:
        targets = ", ".join(v.value for v in EMITTERS)
        raise ValueError(
            f"{vendor.display_name} is not a supported target dialect. Supported: {targets}"
        )
    return emitter_class(**options)


__all__ = [
    "EMITTERS",
    "BuildkiteEmitter",
    "EmitResult",
    "PipelineDumper",
    "TargetEmitter",
    "dump_document",
    "get_emitter",
    "render_comment",
]

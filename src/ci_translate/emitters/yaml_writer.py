"""YAML serialization with stable layout and named anchors."""

from __future__ import annotations

from typing import Any

import yaml

# Long enough that ``if`` expressions and commands never wrap.
LINE_WIDTH = 4096


class PipelineDumper(yaml.SafeDumper):
    """Safe dumper producing pipeline-style YAML.

    Sequences are indented under their parent key, multi-line strings use
    literal block style, and only objects listed in ``anchor_names`` are
    written as anchors and aliases; every other repeated object is written
    out in full.
    """

    anchor_names: dict[int, str] = {}

    def increase_indent(self, flow: bool = False, indentless: bool = False) -> None:
        return super().increase_indent(flow, False)

    def ignore_aliases(self, data: Any) -> bool:
        return id(data) not in self.anchor_names

    def generate_anchor(self, node: yaml.Node) -> str:
        for key, represented in self.represented_objects.items():
            if represented is node and key in self.anchor_names:
                return self.anchor_names[key]
        return super().generate_anchor(node)


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_str(data)


PipelineDumper.add_representer(str, _represent_str)


def dump_document(document: dict[str, Any], anchors: dict[int, str] | None = None) -> str:
    """Serialize a document, keeping dict insertion order.

    Args:
    ----
        document: The document to write.
        anchors: Anchor names keyed by ``id()`` of the objects to anchor.

    Returns:
    -------
        YAML text ending with a newline.

    """
    dumper = type("_AnchoredDumper", (PipelineDumper,), {"anchor_names": dict(anchors or {})})
    return yaml.dump(
        document,
        Dumper=dumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=LINE_WIDTH,
    )

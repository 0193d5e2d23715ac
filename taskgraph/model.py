"""Graph classes for composed task workflows."""

from enum import Enum

import graphviz as gv

from .errors import InvalidGraphError
from .printer import GraphPrinter, MAX_DRAIN_ITERATIONS, MAX_NESTING_DEPTH

TRANSITION_NAME = "transitionName"
LABEL = "label"


class NodeRole(Enum):
    START = "START"
    END = "END"
    FAIL = "FAIL"
    SYNC = "SYNC"
    STEP = "STEP"

    @classmethod
    def of(cls, name):
        if name in ("START", "END", "FAIL", "SYNC"):
            return cls(name)
        return cls.STEP


class Node:
    __slots__ = ["id", "name", "properties", "metadata", "role"]

    def __init__(self, id, name, properties=None, metadata=None):
        assert id is not None, "node id must not be None"
        assert name is not None, "node name must not be None"
        self.id = id
        self.name = name
        self.properties = properties
        self.metadata = metadata
        self.role = NodeRole.of(name)

    def __str__(self):
        return f"Node[id={self.id},name={self.name}]"

    def __repr__(self):
        txt = str(self)
        if self.label is not None:
            txt += f", label={self.label}"
        if self.properties:
            txt += f", properties={self.properties}"
        return txt

    @property
    def label(self):
        if self.metadata:
            return self.metadata.get(LABEL)
        return None

    def set_label(self, label):
        if self.metadata is None:
            self.metadata = {}
        self.metadata[LABEL] = label

    @property
    def is_start(self):
        return self.role is NodeRole.START

    @property
    def is_end(self):
        return self.role is NodeRole.END

    @property
    def is_fail(self):
        return self.role is NodeRole.FAIL

    @property
    def is_sync(self):
        return self.role is NodeRole.SYNC

    def get_dsl_text(self):
        """Name as it appears in DSL text, prefixed by the label if there is one."""
        if self.label is not None:
            return f"{self.label}: {self.name}"
        return self.name


class Link:
    __slots__ = ["source", "target", "properties"]

    def __init__(self, source, target, transition_name=None):
        assert source is not None and target is not None
        self.source = source
        self.target = target
        self.properties = None
        if transition_name is not None:
            self.properties = {TRANSITION_NAME: transition_name}

    def __str__(self):
        return f"Link[from={self.source},to={self.target}]"

    def __repr__(self):
        if self.has_transition_set():
            return f"{self}, with transition {self.transition_name}"
        return str(self)

    def has_transition_set(self):
        return self.properties is not None and TRANSITION_NAME in self.properties

    @property
    def transition_name(self):
        if self.properties is None:
            return None
        return self.properties.get(TRANSITION_NAME)

    def has_no_properties(self):
        return not self.properties


class Graph:
    """Nodes and links describing a composed task.

    A well formed graph has one ``START`` node and at least one ``END``
    node. Links refer to nodes by id.
    """

    def __init__(self, nodes=None, links=None):
        self.nodes = nodes if nodes is not None else []
        self.links = links if links is not None else []

    def __str__(self):
        return f"Graph:  nodes=#{len(self.nodes)}  links=#{len(self.links)}"

    def __repr__(self):
        return f"{self}\n{self.nodes}\n{self.links}"

    def to_verbose_string(self):
        txt = ""
        for node in self.nodes:
            txt += f"[{node.id}:"
            if node.label is not None:
                txt += f"{node.label}:"
            txt += node.name
            if node.properties is not None:
                for key, value in node.properties.items():
                    txt += f":{key}={value}"
            txt += "]"
        for link in self.links:
            transition = "" if link.transition_name is None else f"{link.transition_name}:"
            txt += f"[{transition}{link.source}-{link.target}]"
        return txt

    # Structural queries
    def find_node_by_id(self, id):
        for node in self.nodes:
            if node.id == id:
                return node
        return None

    def find_node_by_name(self, name):
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def require_node(self, id):
        node = self.find_node_by_id(id)
        if node is None:
            raise InvalidGraphError(f"link refers to unknown node id '{id}'", invariant="unknown-node")
        return node

    def find_links_from(self, node, include_links_to_end=False):
        """Outbound links of ``node``.

        Bare links to ``END`` say nothing more happens, so they are left out
        unless ``include_links_to_end`` is set.
        """
        result = []
        for link in self.links:
            if link.source != node.id:
                continue
            if include_links_to_end or not (self.require_node(link.target).is_end and link.has_no_properties()):
                result.append(link)
        return result

    def find_links_from_without_transitions(self, node, include_links_to_end=False):
        result = []
        for link in self.links:
            if link.source != node.id:
                continue
            if link.has_transition_set():
                if link.transition_name == "'*'":
                    result.append(link)
            elif include_links_to_end or not self.require_node(link.target).is_end:
                result.append(link)
        return result

    def to_dsl_text(self, max_iterations=MAX_DRAIN_ITERATIONS, max_depth=MAX_NESTING_DEPTH):
        """Produce the DSL text for this graph."""
        return GraphPrinter(self, max_iterations=max_iterations, max_depth=max_depth).print_graph()

    # Visualisation
    def _build_visual(self, name="workflow", format="pdf"):
        graph = gv.Digraph(name=name, format=format, graph_attr={"label": name})
        for node in self.nodes:
            nodelabel = node.get_dsl_text()
            if node.properties:
                for key, value in node.properties.items():
                    nodelabel += f"\\n--{key}={value}"
            attributes = {}
            if node.role in (NodeRole.START, NodeRole.END, NodeRole.FAIL):
                attributes["shape"] = "circle"
            elif node.is_sync:
                attributes["shape"] = "diamond"
            graph.node(str(node.id), label=nodelabel, _attributes=attributes)
        for link in self.links:
            if link.has_transition_set():
                graph.edge(str(link.source), str(link.target), label=link.transition_name)
            else:
                graph.edge(str(link.source), str(link.target))
        return graph

    def build_visual(self, filepath, format="pdf", name="workflow", show=True):
        graph = self._build_visual(name, format)
        graph.render(filepath, view=show)

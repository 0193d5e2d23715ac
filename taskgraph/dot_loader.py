"""Load a task graph from Graphviz DOT text."""
import logging

import pydot

from .errors import InvalidGraphError
from .model import Graph, Link, Node

logger = logging.getLogger(__name__)


def _unquote(value):
    value = value.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        value = value[1:-1].replace('\\"', '"')
    return value


def parse_node_label(text):
    """Split a node label into ``(label, name, properties)``.

    The first line is ``[label: ]name``, each further line ``--key=value``.
    Lines are separated by DOT ``\\n`` escapes or real newlines.
    """
    lines = [line for line in text.replace("\\n", "\n").split("\n") if line.strip()]
    first = lines[0].strip() if lines else ""
    label = None
    name = first
    if ": " in first:
        label, name = first.split(": ", 1)
    properties = {}
    for line in lines[1:]:
        line = line.strip()
        if line.startswith("--") and "=" in line:
            key, value = line[2:].split("=", 1)
            properties[key] = value
    return label, name, properties or None


def graph_from_dot(text) -> Graph:
    dot_graphs = pydot.graph_from_dot_data(text)
    if not dot_graphs:
        raise InvalidGraphError("no graph found in DOT input", invariant="document")
    dot_graph = dot_graphs[0]

    graph = Graph()
    for dot_node in dot_graph.get_nodes():
        node_id = _unquote(dot_node.get_name())
        if node_id.lower() in {'node', 'graph', 'edge'}:
            continue
        raw_label = _unquote(dot_node.get_attributes().get('label', ''))
        label, name, properties = parse_node_label(raw_label or node_id)
        node = Node(node_id, name or node_id, properties)
        if label:
            node.set_label(label)
        graph.nodes.append(node)

    for edge in dot_graph.get_edges():
        source = _unquote(edge.get_source())
        target = _unquote(edge.get_destination())
        for node_id in (source, target):
            if graph.find_node_by_id(node_id) is None:
                graph.nodes.append(Node(node_id, node_id))
        transition = _unquote(edge.get_attributes().get('label', ''))
        graph.links.append(Link(source, target, transition or None))

    logger.debug("Loaded %s from DOT", graph)
    return graph

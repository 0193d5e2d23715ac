"""JSON document form of a task graph.

A graph is exchanged as ``{"nodes": [...], "links": [...]}`` where links
use ``from``/``to`` keys. Unknown fields are ignored on load and absent
optional fields are left out on dump.
"""

import logging

from pydantic import BaseModel, Field, ValidationError

from .errors import InvalidGraphError
from .model import Graph, Link, Node

logger = logging.getLogger(__name__)


class NodeDocument(BaseModel):
    model_config = {"extra": "ignore"}

    id: str
    name: str
    properties: dict[str, str] | None = None
    metadata: dict[str, str] | None = None


class LinkDocument(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    source: str = Field(alias="from")
    target: str = Field(alias="to")
    properties: dict[str, str] | None = None


class GraphDocument(BaseModel):
    model_config = {"extra": "ignore"}

    nodes: list[NodeDocument] = []
    links: list[LinkDocument] = []


def _to_document(graph):
    nodes = [
        NodeDocument(id=node.id, name=node.name, properties=node.properties, metadata=node.metadata)
        for node in graph.nodes
    ]
    links = [
        LinkDocument(source=link.source, target=link.target, properties=link.properties)
        for link in graph.links
    ]
    return GraphDocument(nodes=nodes, links=links)


def _from_document(document):
    nodes = [Node(doc.id, doc.name, doc.properties, doc.metadata) for doc in document.nodes]
    links = []
    for doc in document.links:
        link = Link(doc.source, doc.target)
        link.properties = doc.properties
        links.append(link)
    graph = Graph(nodes, links)
    logger.debug("Loaded %s", graph)
    return graph


def graph_to_dict(graph):
    return _to_document(graph).model_dump(by_alias=True, exclude_none=True)


def graph_to_json(graph, indent=None):
    return _to_document(graph).model_dump_json(by_alias=True, exclude_none=True, indent=indent)


def graph_from_dict(data):
    try:
        document = GraphDocument.model_validate(data)
    except ValidationError as e:
        raise InvalidGraphError(f"malformed graph document: {e}", invariant="document") from e
    return _from_document(document)


def graph_from_json(text):
    try:
        document = GraphDocument.model_validate_json(text)
    except ValidationError as e:
        raise InvalidGraphError(f"malformed graph document: {e}", invariant="document") from e
    return _from_document(document)

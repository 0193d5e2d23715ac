"""Graph builder for composed task definitions."""
import logging

from .model import Graph, Link, Node
from .parser import AppNode, FlowNode, SplitNode, TaskDSLParser, TransitionNode

logger = logging.getLogger(__name__)


class _Context:
    """Open state of the flow or split being visited.

    ``dangling`` holds the ids of nodes still waiting for a successor,
    ``other_exits`` the transition targets created in a flow, which join
    whatever follows the flow.
    """

    __slots__ = ["is_flow", "start_node_id", "dangling", "other_exits", "extra_nodes"]

    def __init__(self, is_flow, start_node_id):
        self.is_flow = is_flow
        self.start_node_id = start_node_id
        self.dangling = []
        self.other_exits = []
        # transition targets created so far, by key, for reuse within a flow
        self.extra_nodes = {}

    def add_dangling(self, replace, ids):
        if replace:
            self.dangling = []
        self.dangling.extend(ids)


class GraphBuilder:
    def __init__(self):
        self.graph = None
        self.contexts = []
        self.next_node_id = 0
        self.current_app_id = None
        self.existing_nodes = {}

    # Graph management
    def next_id(self):
        node_id = str(self.next_node_id)
        self.next_node_id += 1
        return node_id

    def new_node(self, name, properties=None):
        node = Node(self.next_id(), name, properties)
        self.graph.nodes.append(node)
        return node

    def add_link(self, source, target, transition_name=None):
        self.graph.links.append(Link(source, target, transition_name))

    @property
    def context(self):
        return self.contexts[-1]

    # Build methods
    def build_from_src(self, src):
        tree = TaskDSLParser(src).parse()
        return self.build(tree)

    def build_from_file(self, filepath):
        with open(filepath, 'r') as src_file:
            src = src_file.read()
        return self.build_from_src(src)

    def build(self, tree) -> Graph:
        self.graph = Graph()
        self.next_node_id = 0
        self.current_app_id = None
        self.existing_nodes = {}
        start = self.new_node("START")
        self.contexts = [_Context(True, start.id)]
        self.visit(tree)
        end_id = self.next_id()
        for node_id in self.context.dangling:
            self.add_link(node_id, end_id)
        self.graph.nodes.append(Node(end_id, "END"))
        self.contexts.pop()
        logger.debug("Built %s: %s", self.graph, self.graph.to_verbose_string())
        return self.graph

    # Visitors
    def visit(self, node):
        method = getattr(self, f'visit_{type(node).__name__}')
        method(node)

    def visit_FlowNode(self, flow: FlowNode):
        self.contexts.append(_Context(True, self.context.start_node_id))
        for node in flow.series:
            self.visit(node)
        ctx = self.contexts.pop()
        self.context.add_dangling(False, ctx.dangling)
        self.context.add_dangling(False, ctx.other_exits)

    def visit_SplitNode(self, split: SplitNode):
        open_nodes = self.context.dangling
        if not open_nodes:
            start_id = self.context.start_node_id
        elif len(open_nodes) == 1:
            start_id = open_nodes[0]
        else:
            # several nodes lead into this split, join them first
            sync = self.new_node("SYNC")
            for node_id in open_nodes:
                self.add_link(node_id, sync.id)
            start_id = sync.id
        self.contexts.append(_Context(False, start_id))
        for flow in split.flows:
            self.visit(flow)
        ctx = self.contexts.pop()
        self.context.add_dangling(True, ctx.dangling)

    def visit_AppNode(self, app: AppNode):
        node = self.new_node(app.name, _to_properties(app.args))
        if app.label:
            node.set_label(app.label)
        self.current_app_id = node.id
        ctx = self.context
        if ctx.is_flow:
            if not ctx.dangling:
                self.add_link(ctx.start_node_id, node.id)
            else:
                for node_id in ctx.dangling:
                    self.add_link(node_id, node.id)
            ctx.add_dangling(True, [node.id])
        else:
            self.add_link(ctx.start_node_id, node.id)
            ctx.add_dangling(False, [node.id])
        self.existing_nodes = ctx.extra_nodes if ctx.is_flow else {}
        for transition in app.transitions:
            self.visit(transition)

    def visit_TransitionNode(self, transition: TransitionNode):
        target = transition.target
        if transition.is_special_transition:
            node = self.existing_nodes.get(target.name)
            if node is None:
                node = self.new_node(target.name)
                self.existing_nodes[target.name] = node
            self.add_link(self.current_app_id, node.id, transition.status)
            return
        key = _to_key(target)
        node = self.existing_nodes.get(key)
        created = node is None
        if created:
            node = self.new_node(target.name, _to_properties(target.args))
            if target.label:
                node.set_label(target.label)
            self.existing_nodes[key] = node
        self.add_link(self.current_app_id, node.id, transition.status)
        if created:
            if self.context.is_flow:
                self.context.other_exits.append(node.id)
            else:
                self.context.add_dangling(False, [node.id])


def _to_properties(args):
    if not args:
        return None
    return dict(args)


def _to_key(app):
    key = f"{app.label or ''}>{app.name}"
    for name, value in app.args.items():
        key += f":{name}={value}"
    return key

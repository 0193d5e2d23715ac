"""Convert a task ``Graph`` back into composed task DSL text.

The graph is walked from its ``START`` node. A single outbound link
continues a flow (``a && b``), several outbound links open a split
(``<a || b>``) that is closed at the first node every branch reaches, and
links carrying a transition name are written after the step they leave
(``a 'FAILED'->b``). Nodes only reachable through transitions are picked
up afterwards and appended to the text.

The walk assumes a series-parallel shape: branches of a split do not
cross into each other before they converge.
"""

import logging
import re
from functools import cmp_to_key
from typing import Dict, List, Optional

from .errors import InvalidGraphError, SplitConvergenceError

logger = logging.getLogger(__name__)

MAX_DRAIN_ITERATIONS = 10000
MAX_NESTING_DEPTH = 200

FAIL_TARGET = "$FAIL"
END_TARGET = "$END"

_EXIT_CODE = re.compile(r"[+-]?\d+")


class _Traversal:
    """Scratch state for a single ``print_graph`` call.

    ``unvisited_nodes`` and ``unfollowed_links`` are ordered sets keyed by
    object identity; the graph's own lists are never touched.
    """

    __slots__ = ["parts", "unvisited_nodes", "unfollowed_links", "printed", "depth"]

    def __init__(self, nodes, links):
        self.parts: List[str] = []
        self.unvisited_nodes = dict.fromkeys(nodes)
        self.unfollowed_links = dict.fromkeys(links)
        # nodes already written out as a step
        self.printed = set()
        self.depth = 0

    def append(self, txt):
        self.parts.append(txt)

    def has_text(self):
        return len(self.parts) != 0

    def visit(self, node):
        if node is not None:
            self.unvisited_nodes.pop(node, None)

    def follow(self, link):
        self.unfollowed_links.pop(link, None)

    def text(self):
        return "".join(self.parts)


class GraphPrinter:
    def __init__(self, graph, max_iterations=MAX_DRAIN_ITERATIONS, max_depth=MAX_NESTING_DEPTH):
        self.graph = graph
        self.max_iterations = max_iterations
        self.max_depth = max_depth
        # Set when the drain bound was hit and the text is incomplete.
        self.truncated = False

    def print_graph(self) -> str:
        graph = self.graph
        ctx = _Traversal(graph.nodes, graph.links)
        start = graph.find_node_by_name("START")
        end = graph.find_node_by_name("END")
        if start is None:
            raise InvalidGraphError("problems finding START node", invariant="missing-start")
        if end is None:
            raise InvalidGraphError("problems finding END node", invariant="missing-end")
        ctx.visit(start)
        ctx.visit(end)
        ctx.visit(graph.find_node_by_name("FAIL"))

        self._follow_links(ctx, graph.find_links_from(start), None, False)

        # Whatever is left was only reachable through a transition, for example
        # bbb in "aaa 'foo'->bbb '*'->ccc && bbb && ccc".
        if ctx.unvisited_nodes:
            logger.debug("Printing %d node(s) not reachable from START", len(ctx.unvisited_nodes))
        iterations = 0
        while ctx.unvisited_nodes and iterations < self.max_iterations:
            head = self._find_a_head(ctx)
            ctx.visit(head)
            to_follow = graph.find_links_from(head)
            # A head that goes nowhere is already named by the transition to it
            if to_follow:
                ctx.append(" && ")
                self._print_node(ctx, head)
                self._follow_links(ctx, to_follow, None, False)
            iterations += 1
        if ctx.unvisited_nodes:
            self.truncated = True
            logger.warning(
                "Gave up after %d iterations with %d node(s) unprinted, the graph is probably malformed: %s",
                iterations,
                len(ctx.unvisited_nodes),
                [str(n) for n in ctx.unvisited_nodes],
            )
        return ctx.text()

    def _node(self, id):
        return self.graph.require_node(id)

    def _find_a_head(self, ctx):
        """Walk back from the first unvisited node over unfollowed links."""
        candidate = next(iter(ctx.unvisited_nodes))
        seen = {candidate.id}
        changed = True
        while changed:
            changed = False
            for link in ctx.unfollowed_links:
                if link.target == candidate.id:
                    candidate = self._node(link.source)
                    if candidate.id in seen:
                        return candidate
                    seen.add(candidate.id)
                    changed = True
        return candidate

    def _follow_links(self, ctx, to_follow, terminate_at, in_nested_split):
        """Chase down ``to_follow``, stopping when ``terminate_at`` is reached.

        ``in_nested_split`` is set when following the links of a nested split
        immediately inside an outer one, where no joining ``&&`` is wanted.
        """
        while to_follow:
            if len(to_follow) > 1:
                if not in_nested_split and ctx.has_text():
                    ctx.append(" && ")
                ctx.append("<")
                end_of_split = self._find_end_of_split(to_follow)
                if len(to_follow) > 2:
                    nested_splits = self._find_nested_splits(to_follow, end_of_split)
                    for i, (end_of_nested, nested_links) in enumerate(nested_splits.items()):
                        self._follow_links(ctx, nested_links, end_of_nested, True)
                        _remove_all(to_follow, nested_links)
                        ctx.append(" && ")
                        self._follow_node(ctx, end_of_nested, end_of_split)
                        if i + 1 < len(nested_splits):
                            ctx.append(" || ")
                    if to_follow and nested_splits:
                        ctx.append(" || ")
                for i, link in enumerate(to_follow):
                    if i > 0:
                        ctx.append(" || ")
                    self._follow_link(ctx, link, end_of_split)
                ctx.append(">")
                if end_of_split is None or end_of_split.is_end:
                    break
                if end_of_split is terminate_at:
                    break
                if end_of_split in ctx.printed:
                    self._stop_at_cycle(end_of_split)
                    break
                ctx.visit(end_of_split)
                ctx.printed.add(end_of_split)
                # SYNC nodes only join the branches, they have no DSL form
                if not end_of_split.is_sync:
                    ctx.append(" && ")
                    self._print_node(ctx, end_of_split)
                    self._print_transitions(ctx, self.graph.find_links_from(end_of_split), None)
                to_follow = self.graph.find_links_from_without_transitions(end_of_split)
            else:
                # A flow: walk along it step by step
                link = to_follow[0]
                node = self._node(link.target)
                if node is terminate_at:
                    break
                if node in ctx.printed:
                    self._stop_at_cycle(node)
                    break
                if ctx.has_text():
                    ctx.append(" && ")
                ctx.follow(link)
                to_follow = self._print_step(ctx, node, terminate_at)
                in_nested_split = False

    def _stop_at_cycle(self, node):
        self.truncated = True
        logger.warning("Stopped at %s, it was already printed so the graph has a cycle", node)

    def _follow_link(self, ctx, link, finish_at):
        ctx.follow(link)
        self._follow_node(ctx, self._node(link.target), finish_at)

    def _follow_node(self, ctx, node, finish_at):
        """Print ``node`` and everything after it, one level of split nesting deeper."""
        ctx.depth += 1
        if ctx.depth > self.max_depth:
            raise InvalidGraphError(
                f"splits nested deeper than {self.max_depth} levels at {node}", invariant="nesting-depth"
            )
        to_follow = self._print_step(ctx, node, finish_at)
        self._follow_links(ctx, to_follow, finish_at, False)
        ctx.depth -= 1

    def _print_step(self, ctx, node, finish_at):
        """Print ``node`` with its transitions, returning the links still to follow."""
        to_follow = self.graph.find_links_from(node)
        single_split_necessary = False
        common_target = None
        if len(to_follow) > 1 and _all_transitions_but_one(to_follow):
            # A step whose transition targets rejoin the flow later needs a
            # split of its own, otherwise those branches would run on to END.
            try:
                common_target = self._find_end_of_split(_transition_links_first(to_follow))
                single_split_necessary = (
                    common_target is not None
                    and common_target.name != "END"
                    and (finish_at is None or finish_at is not common_target)
                )
            except SplitConvergenceError:
                pass

        if single_split_necessary:
            ctx.append("<")
            self._print_node(ctx, node)
            self._print_transitions(ctx, to_follow, common_target)
            ctx.append(">")
        else:
            self._print_node(ctx, node)
            self._print_transitions(ctx, to_follow, finish_at)
        return to_follow

    def _print_node(self, ctx, node):
        ctx.visit(node)
        ctx.printed.add(node)
        ctx.append(node.get_dsl_text())
        self._print_node_properties(ctx, node)

    def _print_node_properties(self, ctx, node):
        if node.properties is None:
            return
        for key, value in node.properties.items():
            if " " in value and not value.startswith("'"):
                value = f"'{value}'"
            ctx.append(f" --{key}={value}")

    def _print_transitions(self, ctx, to_follow, finish_at):
        """Print transition links as ``'status'->target``, removing them from ``to_follow``."""
        for link in list(to_follow):
            if not link.has_transition_set():
                continue
            status = link.transition_name
            if not _EXIT_CODE.fullmatch(status) and not status.startswith("'"):
                status = f"'{status}'"
            target = self._node(link.target)
            if target.is_fail:
                target_name = FAIL_TARGET
            elif target.is_end:
                target_name = END_TARGET
            else:
                target_name = target.get_dsl_text()
            ctx.append(f" {status}->{target_name}")
            self._print_node_properties(ctx, target)
            ctx.follow(link)
            # Only consider the target visited if it goes nowhere after this
            onward = self.graph.find_links_from(target)
            if not onward or _all_links_target(onward, finish_at):
                ctx.visit(target)
            to_follow.remove(link)

    def _find_end_of_split(self, to_follow):
        if not to_follow:
            return None
        if len(to_follow) == 1:
            return self._node(to_follow[0].target)
        # Walk the first branch; the first node on it that every other branch
        # also reaches is where the split ends.
        candidate = self._node(to_follow[0].target)
        walked = set()
        while candidate is not None:
            if candidate.id in walked:
                raise SplitConvergenceError(f"Unable to find end of split, cycle through {candidate}")
            walked.add(candidate.id)
            if all(self._found_in_chain(link, candidate) for link in to_follow[1:]):
                return candidate
            candidate = self._next_candidate(candidate)
        raise SplitConvergenceError()

    def _next_candidate(self, node):
        """The node a convergence walk moves to after ``node``."""
        links = self.graph.find_links_from(node, True)
        if not links:
            return None
        if len(links) == 1 or _count_links_without_transitions(links) <= 1:
            # All of them come together at the same place, any will do
            return self._node(links[0].target)
        candidate = node
        while _count_links_without_transitions(links) > 1:
            candidate = self._find_end_of_split(links)
            links = self.graph.find_links_from(candidate, True)
        return candidate

    def _find_nested_splits(self, to_follow, end) -> Dict[object, List]:
        """Find splits nested inside the split made by ``to_follow``.

        ``<<AA || BB> && CC || DD>`` leaves START with three links but AA and
        BB form their own split ending at CC. The result maps the end node of
        each nested split to its links, innermost split first.
        """
        nested_splits = {}
        for link in to_follow:
            successor = self._node(link.target)
            walked = set()
            while successor is not None and successor is not end and successor.id not in walked:
                walked.add(successor.id)
                common_links = self._find_links_reaching(to_follow, link, successor)
                if common_links is not None:
                    insert = True
                    for_removal = None
                    for end_of_nested, nested_links in nested_splits.items():
                        if _same_links(nested_links, common_links):
                            if self._is_successor(end_of_nested, successor):
                                # Same split, just a later node on it
                                insert = False
                            else:
                                for_removal = end_of_nested
                    if insert:
                        if for_removal is not None:
                            del nested_splits[for_removal]
                        nested_splits[successor] = common_links
                successor = self._next_candidate(successor)

        def compare(split_a, split_b):
            if split_a[0] is split_b[0]:
                return 0
            if self._is_successor(split_a[0], split_b[0]):
                return -1
            return 1

        return dict(sorted(nested_splits.items(), key=cmp_to_key(compare)))

    def _find_links_reaching(self, links, known, node) -> Optional[List]:
        """Links other than ``known`` with ``node`` in their chain, plus ``known``."""
        result = None
        for link in links:
            if link is known:
                continue
            if self._found_in_chain(link, node):
                if result is None:
                    result = []
                result.append(link)
        if result is not None:
            result.append(known)
        return result

    def _is_successor(self, a, b):
        return any(self._found_in_chain(link, b) for link in self.graph.find_links_from(a, True))

    def _found_in_chain(self, link, candidate):
        """True if ``candidate`` is reachable by following ``link``."""
        to_visit = [link.target]
        seen = set()
        while to_visit:
            node = self._node(to_visit.pop())
            if node is candidate:
                return True
            if node.id in seen:
                continue
            seen.add(node.id)
            for outbound in self.graph.find_links_from(node, True):
                to_visit.append(outbound.target)
        return False


def _remove_all(links, to_remove):
    links[:] = [link for link in links if not any(link is r for r in to_remove)]


def _same_links(links_a, links_b):
    return all(a in links_b for a in links_a) and all(b in links_a for b in links_b)


def _count_links_without_transitions(links):
    return sum(1 for link in links if not link.has_transition_set())


def _all_transitions_but_one(links):
    return len(links) - sum(1 for link in links if link.has_transition_set()) == 1


def _transition_links_first(links):
    result = []
    for link in links:
        if link.has_transition_set():
            result.insert(0, link)
        else:
            result.append(link)
    return result


def _all_links_target(links, node):
    if node is None:
        return False
    return all(link.target == node.id for link in links)

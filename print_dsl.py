import argparse
import logging
import os
import sys

from taskgraph.builder import GraphBuilder
from taskgraph.dot_loader import graph_from_dot
from taskgraph.errors import TaskGraphError
from taskgraph.printer import GraphPrinter, MAX_DRAIN_ITERATIONS, MAX_NESTING_DEPTH
from taskgraph.serialization import graph_from_json, graph_to_json


def load_graph(path, format=None):
    if format is None:
        extension = os.path.splitext(path)[1].lower()
        format = "dot" if extension in (".dot", ".gv") else "json"
    with open(path, "r") as f:
        data = f.read()
    if format == "dot":
        return graph_from_dot(data)
    return graph_from_json(data)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Print the composed task definition of a workflow graph")
    parser.add_argument("graph_file", nargs="?", help="Path to a JSON or DOT workflow graph")
    parser.add_argument("--dsl", help="Parse this definition and print its graph as JSON instead")
    parser.add_argument("--format", choices=["json", "dot"], help="Input format (default: from the file extension)")
    parser.add_argument("--visual", dest="visual", help="Optional output path for a visual graph (without extension)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--max-iterations", type=int, default=MAX_DRAIN_ITERATIONS,
                        help="Bound on passes over nodes only reachable through transitions")
    parser.add_argument("--max-depth", type=int, default=MAX_NESTING_DEPTH, help="Bound on nesting depth")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if (args.dsl is None) == (args.graph_file is None):
        parser.error("give either GRAPH_FILE or --dsl")

    try:
        if args.dsl is not None:
            graph = GraphBuilder().build_from_src(args.dsl)
            print(graph_to_json(graph, indent=2))
        else:
            graph = load_graph(args.graph_file, args.format)
            printer = GraphPrinter(graph, max_iterations=args.max_iterations, max_depth=args.max_depth)
            print(printer.print_graph())
        if args.visual:
            graph.build_visual(args.visual, format="pdf", show=False)
    except (TaskGraphError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

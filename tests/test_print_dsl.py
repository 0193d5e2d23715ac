import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout

import print_dsl
from taskgraph.builder import GraphBuilder
from taskgraph.serialization import graph_to_json


class TestPrintDsl(unittest.TestCase):
    def run_main(self, argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            status = print_dsl.main(argv)
        return status, out.getvalue(), err.getvalue()

    def write_temp(self, suffix, text):
        with tempfile.NamedTemporaryFile('w', suffix=suffix, delete=False) as f:
            f.write(text)
        self.addCleanup(os.remove, f.name)
        return f.name

    def test_print_json_graph(self):
        dsl = "AppA && <AppB || AppC> && AppD"
        path = self.write_temp('.json', graph_to_json(GraphBuilder().build_from_src(dsl)))
        status, out, _ = self.run_main([path])
        self.assertEqual(status, 0)
        self.assertEqual(out.strip(), dsl)

    def test_print_dot_graph(self):
        graph = GraphBuilder().build_from_src("AppA 'FAILED'->AppB")
        path = self.write_temp('.txt', graph._build_visual(format='dot').source)
        status, out, _ = self.run_main([path, '--format', 'dot'])
        self.assertEqual(status, 0)
        self.assertEqual(out.strip(), "AppA 'FAILED'->AppB")

    def test_dsl_to_json(self):
        status, out, _ = self.run_main(['--dsl', '<AppA || AppB>'])
        self.assertEqual(status, 0)
        data = json.loads(out)
        self.assertEqual([n["name"] for n in data["nodes"]], ["START", "AppA", "AppB", "END"])

    def test_errors(self):
        status, _, err = self.run_main(['--dsl', 'AppA ->'])
        self.assertEqual(status, 1)
        self.assertTrue(err.startswith("error: "))
        status, _, err = self.run_main([os.path.join(tempfile.gettempdir(), 'no-such-graph.json')])
        self.assertEqual(status, 1)
        self.assertIn("error: ", err)


if __name__ == '__main__':
    unittest.main()

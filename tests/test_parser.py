import unittest
from taskgraph.errors import DSLParseError
from taskgraph.parser import AppNode, FlowNode, SplitNode, TaskDSLParser, TokenKind, Tokenizer, parse


class TestTokenizer(unittest.TestCase):
    def kinds(self, definition):
        return [t.kind for t in Tokenizer(definition).tokenize()]

    def test_tokens(self):
        self.assertEqual(
            self.kinds("<a-b || c> && d 'x'->e"),
            [
                TokenKind.LT,
                TokenKind.IDENTIFIER,
                TokenKind.OROR,
                TokenKind.IDENTIFIER,
                TokenKind.GT,
                TokenKind.ANDAND,
                TokenKind.IDENTIFIER,
                TokenKind.LITERAL_STRING,
                TokenKind.ARROW,
                TokenKind.IDENTIFIER,
            ],
        )

    def test_exit_code_arrow(self):
        tokens = Tokenizer("a 0->b").tokenize()
        self.assertEqual([t.data for t in tokens], ["a", "0", "->", "b"])

    def test_arg_values(self):
        tokens = Tokenizer("a --x=hello>b").tokenize()
        self.assertEqual(tokens[4].data, "hello")
        self.assertIs(tokens[5].kind, TokenKind.GT)
        tokens = Tokenizer("a --x='it''s here'").tokenize()
        self.assertIs(tokens[4].kind, TokenKind.LITERAL_STRING)
        self.assertEqual(tokens[4].data, "'it''s here'")
        tokens = Tokenizer("a --x='hi'+payload").tokenize()
        self.assertIs(tokens[4].kind, TokenKind.IDENTIFIER)
        self.assertEqual(tokens[4].data, "'hi'+payload")

    def test_errors(self):
        for definition, message in [
            ("<aa | bb>", "'||'"),
            ("aa & bb", "'&&'"),
            ("aa 'FOO->bb", "non terminating quoted string"),
            ("aa --x='FOO", "non terminating quoted string"),
            ("aa # bb", "unexpected data"),
        ]:
            with self.subTest(definition=definition):
                with self.assertRaises(DSLParseError) as cm:
                    Tokenizer(definition).tokenize()
                self.assertIn(message, cm.exception.message)


class TestParser(unittest.TestCase):
    def test_flow(self):
        flow = parse("A&&B")
        self.assertIsInstance(flow, FlowNode)
        self.assertEqual([n.name for n in flow.series], ["A", "B"])
        self.assertEqual(str(flow), "A && B")

    def test_split(self):
        flow = parse("<A || B && C> && D")
        split = flow.series[0]
        self.assertIsInstance(split, SplitNode)
        self.assertEqual(len(split.flows), 2)
        self.assertIsInstance(split.flows[0], FlowNode)
        self.assertEqual(str(split.flows[1]), "B && C")
        self.assertEqual(flow.series[1].name, "D")

    def test_parentheses_are_flattened(self):
        flow = parse("<(jobA && jobB && jobC) || boo: jobC>")
        self.assertEqual(str(flow), "<jobA && jobB && jobC || boo: jobC>")
        self.assertEqual(len(flow.series[0].flows[0].series), 3)
        flow = parse("(a && b) && c")
        self.assertEqual([n.name for n in flow.series], ["a", "b", "c"])

    def test_labels_and_args(self):
        flow = parse("x: aaa --one=bar --two='b ar'")
        app = flow.series[0]
        self.assertIsInstance(app, AppNode)
        self.assertEqual(app.label, "x")
        self.assertEqual(app.args, {"one": "bar", "two": "b ar"})

    def test_transitions(self):
        app = parse("aaa 'FOO'->XXX 0->bbb '*'->ccc 'x'->$FAIL 'y'->t: $END").series[0]
        statuses = [(t.status, t.is_exit_code_check) for t in app.transitions]
        self.assertEqual(statuses, [("FOO", False), ("0", True), ("*", False), ("x", False), ("y", False)])
        self.assertEqual(app.transitions[1].target.name, "bbb")
        self.assertTrue(app.transitions[3].is_fail_transition)
        self.assertTrue(app.transitions[4].is_end_transition)
        self.assertEqual(app.transitions[4].target.label, "t")
        self.assertFalse(app.transitions[0].is_special_transition)

    def test_transition_target_args(self):
        app = parse("aaa 'FOO'->bbb --p=1 && ccc").series[0]
        self.assertEqual(app.transitions[0].target.args, {"p": "1"})
        self.assertEqual(str(app), "aaa 'FOO'->bbb --p=1")

    def test_errors(self):
        for definition, message in [
            ("", "out of data"),
            ("   ", "out of data"),
            ("App1 ->", "preceded by"),
            ("App1 xx->", "out of data"),
            ("App1 BROKEN->App2", "must be a number"),
            ("App1 0->:foo", "label references"),
            ("aa; bb", "multiple task sequences"),
            ("aa bb", "unexpected data after end"),
            ("aa &&&& bb", "expected app name"),
            ("<aa || bb", "out of data"),
            ("x: (aa && bb)", "parentheses"),
            ("x: y: aa", "only one label"),
            ("lbl: <aa || bb>", "labels cannot be applied to splits"),
            ("aa && lbl: <bb || cc>", "labels cannot be applied to splits"),
        ]:
            with self.subTest(definition=definition):
                with self.assertRaises(DSLParseError) as cm:
                    TaskDSLParser(definition).parse()
                self.assertIn(message, cm.exception.message)

    def test_error_position(self):
        with self.assertRaises(DSLParseError) as cm:
            parse("App1 BROKEN->App2")
        self.assertEqual(cm.exception.position, 5)
        self.assertIn("App1 BROKEN->App2\n     ^", str(cm.exception))


if __name__ == '__main__':
    unittest.main()

from __future__ import annotations

from pathlib import Path
import sys
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from backbone_engine.errors import InvariantViolation
from backbone_engine.runtime import GRAPH, depends_on, find_dead_ends, topo_sort, validate_graph


class GraphTests(unittest.TestCase):
    def test_topo_sort_puts_dependencies_first(self) -> None:
        order = topo_sort(GRAPH)
        self.assertEqual(sorted(order), sorted(GRAPH))
        position = {node: i for i, node in enumerate(order)}
        for node, deps in GRAPH.items():
            for dep in deps:
                self.assertLess(position[dep], position[node], f"{dep} must run before {node}")
        self.assertEqual(order[-1], "priority")

    def test_topo_sort_is_stable(self) -> None:
        shuffled = dict(reversed(list(GRAPH.items())))
        self.assertEqual(topo_sort(GRAPH), topo_sort(shuffled))

    def test_cycle_raises_invariant_violation(self) -> None:
        graph = {"a": ("b",), "b": ("c",), "c": ("a",)}
        with self.assertRaises(InvariantViolation) as ctx:
            topo_sort(graph)
        self.assertEqual(ctx.exception.rule, "dag")
        self.assertIn("cycle", str(ctx.exception))

    def test_unknown_dependency_raises(self) -> None:
        with self.assertRaises(InvariantViolation):
            topo_sort({"a": ("missing",)})

    def test_ranker_depends_on_impact_and_ripple(self) -> None:
        self.assertTrue(depends_on("action_ranker", "action_impact"))
        self.assertTrue(depends_on("priority", "ripple"))
        self.assertTrue(depends_on("action_impact", "runway"))
        self.assertFalse(depends_on("runway", "action_ranker"))

    def test_no_dead_ends_in_shipped_graph(self) -> None:
        self.assertEqual(find_dead_ends(GRAPH), [])
        report = validate_graph(GRAPH)
        self.assertTrue(report["valid"], report["errors"])

    def test_dead_end_is_reported(self) -> None:
        graph = dict(GRAPH)
        graph["orphan"] = ("runway",)
        report = validate_graph(graph)
        self.assertFalse(report["valid"])
        self.assertEqual(report["dead_ends"], ["orphan"])


if __name__ == "__main__":
    unittest.main()

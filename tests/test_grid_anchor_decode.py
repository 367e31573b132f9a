import math
import unittest
from collections import defaultdict

import numpy as np

from detect_kit.errors import ConfigurationError, DecodeError
from detect_kit.labels import LabelTable
from detect_kit.postprocess import DEFAULT_ANCHORS, GridAnchorConfig, GridAnchorDecoder

LABELS = LabelTable(["cat", "dog"])
BACKGROUND = -20.0


def logit(p: float) -> float:
    return math.log(p / (1.0 - p))


def small_cfg(**kwargs) -> GridAnchorConfig:
    base = dict(
        threshold=0.2,
        max_per_class=1,
        input_width=64,
        input_height=64,
        block_size=32,
        num_boxes_per_block=1,
        anchors=(1.0, 1.0),
    )
    base.update(kwargs)
    return GridAnchorConfig(**base)


def empty_grid(cfg: GridAnchorConfig, num_classes: int = 2) -> np.ndarray:
    s = cfg.grid_size
    grid = np.zeros((1, s, s, cfg.num_boxes_per_block * (num_classes + 5)), dtype=np.float32)
    for b in range(cfg.num_boxes_per_block):
        grid[..., b * (num_classes + 5) + 4] = BACKGROUND
    return grid


def put(grid, y, x, b, objectness, class_logits, txywh=(0.0, 0.0, 0.0, 0.0)) -> None:
    offset = (len(class_logits) + 5) * b
    grid[0, y, x, offset : offset + 4] = txywh
    grid[0, y, x, offset + 4] = objectness
    grid[0, y, x, offset + 5 : offset + 5 + len(class_logits)] = class_logits


class TestGridAnchorDecode(unittest.TestCase):
    def test_cap_keeps_highest_confidence(self) -> None:
        cfg = small_cfg(threshold=0.2, max_per_class=1)
        grid = empty_grid(cfg)
        put(grid, 0, 0, 0, logit(0.3), [30.0, 0.0])
        put(grid, 1, 1, 0, logit(0.9), [30.0, 0.0])
        out = GridAnchorDecoder(LABELS, cfg).decode(grid)
        self.assertEqual(len(out), 1)
        self.assertEqual(out[0].detected_class, "cat")
        self.assertAlmostEqual(out[0].confidence, 0.9, places=5)

    def test_results_sorted_by_confidence(self) -> None:
        cfg = small_cfg(threshold=0.1, max_per_class=5)
        grid = empty_grid(cfg)
        put(grid, 0, 0, 0, logit(0.4), [0.0, 30.0])
        put(grid, 0, 1, 0, logit(0.8), [30.0, 0.0])
        put(grid, 1, 0, 0, logit(0.6), [0.0, 30.0])
        out = GridAnchorDecoder(LABELS, cfg).decode(grid)
        self.assertEqual([d.detected_class for d in out], ["cat", "dog", "dog"])
        self.assertEqual([round(d.confidence, 3) for d in out], [0.8, 0.6, 0.4])

    def test_box_geometry(self) -> None:
        cfg = small_cfg(threshold=0.1)
        grid = empty_grid(cfg)
        put(grid, 1, 0, 0, 10.0, [30.0, 0.0])
        d = GridAnchorDecoder(LABELS, cfg).decode(grid)[0]
        # center (16, 48), size 32x32 on a 64x64 input
        self.assertAlmostEqual(d.box.x, 0.0, places=6)
        self.assertAlmostEqual(d.box.y, 0.5, places=6)
        self.assertAlmostEqual(d.box.w, 0.5, places=6)
        self.assertAlmostEqual(d.box.h, 0.5, places=6)

    def test_anchor_scales_box(self) -> None:
        cfg = small_cfg(threshold=0.1, num_boxes_per_block=2, anchors=(1.0, 1.0, 0.5, 0.25))
        grid = empty_grid(cfg)
        put(grid, 0, 1, 1, 10.0, [30.0, 0.0])
        d = GridAnchorDecoder(LABELS, cfg).decode(grid)[0]
        # center (48, 16); w = 0.5 * 32 = 16, h = 0.25 * 32 = 8
        self.assertAlmostEqual(d.box.x, (48 - 8) / 64, places=6)
        self.assertAlmostEqual(d.box.y, (16 - 4) / 64, places=6)
        self.assertAlmostEqual(d.box.w, 16 / 64, places=6)
        self.assertAlmostEqual(d.box.h, 8 / 64, places=6)

    def test_oversized_box_clamped(self) -> None:
        cfg = small_cfg(threshold=0.1)
        grid = empty_grid(cfg)
        put(grid, 0, 0, 0, 10.0, [30.0, 0.0], txywh=(0.0, 0.0, math.log(4.0), math.log(4.0)))
        d = GridAnchorDecoder(LABELS, cfg).decode(grid)[0]
        self.assertEqual((d.box.x, d.box.y), (0.0, 0.0))
        self.assertAlmostEqual(d.box.w, 1.0, places=6)
        self.assertAlmostEqual(d.box.h, 1.0, places=6)

    def test_threshold_is_exclusive(self) -> None:
        cfg = small_cfg(threshold=0.5)
        grid = empty_grid(cfg)
        # softmax of equal logits is 0.5; objectness 1.0 after saturation
        put(grid, 0, 0, 0, 60.0, [0.0, 0.0])
        self.assertEqual(GridAnchorDecoder(LABELS, cfg).decode(grid), [])
        self.assertEqual(len(GridAnchorDecoder(LABELS, cfg).decode(grid, threshold=0.49)), 1)

    def test_argmax_tie_picks_first_class(self) -> None:
        cfg = small_cfg(threshold=0.1)
        grid = empty_grid(cfg)
        put(grid, 0, 0, 0, 10.0, [2.0, 2.0])
        out = GridAnchorDecoder(LABELS, cfg).decode(grid)
        self.assertEqual(out[0].detected_class, "cat")

    def test_equal_confidence_keeps_discovery_order(self) -> None:
        cfg = small_cfg(threshold=0.1, max_per_class=1)
        grid = empty_grid(cfg)
        put(grid, 1, 1, 0, 10.0, [30.0, 0.0])
        put(grid, 0, 1, 0, 10.0, [30.0, 0.0])
        d = GridAnchorDecoder(LABELS, cfg).decode(grid)[0]
        # (y=0, x=1) is visited before (y=1, x=1)
        self.assertAlmostEqual(d.box.y, 0.0, places=6)

    def test_degenerate_logits_are_skipped(self) -> None:
        cfg = small_cfg(threshold=0.1, max_per_class=5)
        grid = empty_grid(cfg)
        put(grid, 0, 0, 0, 10.0, [-np.inf, -np.inf])
        put(grid, 0, 1, 0, 10.0, [np.nan, 1.0])
        put(grid, 1, 0, 0, 10.0, [30.0, 0.0])
        out = GridAnchorDecoder(LABELS, cfg).decode(grid)
        self.assertEqual(len(out), 1)
        self.assertAlmostEqual(out[0].box.y, 0.5, places=6)

    def test_ordering_property_on_random_grid(self) -> None:
        cfg = small_cfg(input_width=160, input_height=160, num_boxes_per_block=5, anchors=DEFAULT_ANCHORS, threshold=0.1)
        labels = LabelTable(["a", "b", "c"])
        rng = np.random.default_rng(11)
        grid = rng.normal(scale=2.0, size=(1, 5, 5, 5 * 8)).astype(np.float32)
        dec = GridAnchorDecoder(labels, cfg)

        everything = dec.decode(grid, max_per_class=10_000)
        capped = dec.decode(grid, max_per_class=2)

        by_class = defaultdict(list)
        for d in everything:
            by_class[d.detected_class].append(d.confidence)
        expected = sorted(c for confs in by_class.values() for c in sorted(confs, reverse=True)[:2])
        self.assertEqual(sorted(d.confidence for d in capped), expected)

        counts = defaultdict(int)
        for d in capped:
            counts[d.detected_class] += 1
        self.assertTrue(all(v <= 2 for v in counts.values()))

        for d in everything:
            self.assertGreater(d.confidence, 0.1)
            self.assertLessEqual(d.confidence, 1.0)
            self.assertTrue(0.0 <= d.box.x <= 1.0)
            self.assertTrue(0.0 <= d.box.y <= 1.0)
            self.assertLessEqual(d.box.x + d.box.w, 1.0 + 1e-6)
            self.assertLessEqual(d.box.y + d.box.h, 1.0 + 1e-6)

        counts_by_threshold = [len(dec.decode(grid, threshold=t, max_per_class=3)) for t in np.linspace(0, 1, 11)]
        self.assertEqual(counts_by_threshold, sorted(counts_by_threshold, reverse=True))

        self.assertEqual(dec.decode(grid), dec.decode(grid))

    def test_mapping_and_unbatched_input(self) -> None:
        cfg = small_cfg(threshold=0.1)
        grid = empty_grid(cfg)
        put(grid, 0, 0, 0, 10.0, [30.0, 0.0])
        dec = GridAnchorDecoder(LABELS, cfg)
        self.assertEqual(dec.decode({"output": grid}), dec.decode(grid[0]))

    def test_shape_mismatch(self) -> None:
        cfg = small_cfg()
        dec = GridAnchorDecoder(LabelTable(["cat", "dog", "bird"]), cfg)
        with self.assertRaises(DecodeError):
            dec.decode(empty_grid(cfg, num_classes=2))
        with self.assertRaises(DecodeError):
            dec.decode(np.zeros((1, 3, 3, 8), dtype=np.float32))

    def test_invalid_config(self) -> None:
        with self.assertRaises(ConfigurationError):
            GridAnchorConfig(num_boxes_per_block=3)
        with self.assertRaises(ConfigurationError):
            GridAnchorConfig(block_size=0)
        with self.assertRaises(ConfigurationError):
            GridAnchorConfig(input_width=16, block_size=32)
        with self.assertRaises(ConfigurationError):
            GridAnchorConfig(threshold=-0.1)
        cfg = GridAnchorConfig(num_boxes_per_block=1, anchors=[2, 3])
        self.assertEqual(cfg.anchors, (2.0, 3.0))
        self.assertEqual(GridAnchorConfig().grid_size, 13)


if __name__ == "__main__":
    unittest.main()

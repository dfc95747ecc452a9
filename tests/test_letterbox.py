import unittest

import numpy as np

from sketch_kit.errors import InvalidRasterError
from sketch_kit.letterbox import (
    PAD_COLOR,
    as_bgr_image,
    compute_transform,
    letterbox,
    normalize_image,
    resized_size,
    to_planar_tensor,
)


class TestLetterbox(unittest.TestCase):
    def test_transform_portrait(self) -> None:
        # 400x600 on 640: scale 640/600, resized width 426.67 -> 427, pad (640-427)/2 = 106.5 -> 107.
        t = compute_transform(400, 600, 640)
        self.assertAlmostEqual(t.scale, 640 / 600)
        self.assertEqual(t.pad_x, 107.0)
        self.assertEqual(t.pad_y, 0.0)
        self.assertEqual((t.orig_width, t.orig_height), (400, 600))

    def test_transform_square_has_no_padding(self) -> None:
        t = compute_transform(320, 320, 640)
        self.assertEqual(t.scale, 2.0)
        self.assertEqual((t.pad_x, t.pad_y), (0.0, 0.0))

    def test_round_trip_coordinates(self) -> None:
        t = compute_transform(400, 600, 640)
        for x, y in [(0.0, 0.0), (123.4, 456.7), (400.0, 600.0)]:
            mx, my = t.to_model(x, y)
            ox, oy = t.to_original(mx, my)
            self.assertAlmostEqual(ox, x, places=6)
            self.assertAlmostEqual(oy, y, places=6)

    def test_corners_invert_to_image_bounds(self) -> None:
        sizes = [(1, 10000), (10000, 1), (641, 1), (1, 641), (400, 600), (1920, 1080), (7, 7), (640, 640), (639, 1)]
        for width, height in sizes:
            with self.subTest(width=width, height=height):
                t = compute_transform(width, height, 640)
                new_w, new_h = resized_size(width, height, t.scale)
                self.assertGreaterEqual(t.pad_x, 0)
                self.assertGreaterEqual(t.pad_y, 0)
                self.assertLessEqual(t.pad_x + new_w, 640)
                self.assertLessEqual(t.pad_y + new_h, 640)

                x1, y1, x2, y2 = t.box_to_original(t.pad_x, t.pad_y, t.pad_x + new_w, t.pad_y + new_h)
                tol = 0.5 / t.scale
                self.assertLessEqual(abs(x1), tol)
                self.assertLessEqual(abs(y1), tol)
                self.assertLessEqual(abs(x2 - width), tol)
                self.assertLessEqual(abs(y2 - height), tol)

    def test_one_pixel_strip_keeps_a_column(self) -> None:
        t = compute_transform(1, 10000, 640)
        self.assertEqual(resized_size(1, 10000, t.scale), (1, 640))
        # The column maps back to 15.6px unclipped; clipping holds it to the image.
        _, _, x2, _ = t.box_to_original(t.pad_x, 0, t.pad_x + 1, 640)
        self.assertEqual(float(x2), 1.0)
        canvas, _ = letterbox(np.zeros((10000, 1, 3), dtype=np.uint8), size=640)
        self.assertTrue(np.array_equal(canvas[320, int(t.pad_x)], np.zeros(3, dtype=np.uint8)))
        self.assertTrue(np.array_equal(canvas[320, int(t.pad_x) - 1], np.array(PAD_COLOR, dtype=np.uint8)))

    def test_canvas_padding_and_placement(self) -> None:
        img = np.zeros((60, 40, 3), dtype=np.uint8)
        canvas, t = letterbox(img, size=64)
        self.assertEqual(canvas.shape, (64, 64, 3))
        # Width 40 * (64/60) = 42.67 -> 43, pad (64-43)/2 = 10.5 -> 11.
        self.assertEqual(t.pad_x, 11.0)
        self.assertTrue(np.array_equal(canvas[0, 0], np.array(PAD_COLOR, dtype=np.uint8)))
        self.assertTrue(np.array_equal(canvas[32, 63], np.array(PAD_COLOR, dtype=np.uint8)))
        self.assertTrue(np.array_equal(canvas[32, 32], np.zeros(3, dtype=np.uint8)))

    def test_planar_tensor_is_rgb_order(self) -> None:
        canvas = np.zeros((2, 2, 3), dtype=np.uint8)
        canvas[:, :, 0] = 255  # blue in BGR
        canvas[:, :, 2] = 51  # red in BGR
        tensor = to_planar_tensor(canvas)
        self.assertEqual(tensor.shape, (1, 3, 2, 2))
        self.assertEqual(tensor.dtype, np.float32)
        self.assertTrue(np.allclose(tensor[0, 0], 0.2))
        self.assertTrue(np.allclose(tensor[0, 1], 0.0))
        self.assertTrue(np.allclose(tensor[0, 2], 1.0))

    def test_normalize_image(self) -> None:
        img = np.full((30, 50, 3), 255, dtype=np.uint8)
        prep = normalize_image(img, size=32)
        self.assertEqual(prep.tensor.shape, (1, 3, 32, 32))
        self.assertEqual(prep.orig_size, (50, 30))
        self.assertLessEqual(float(prep.tensor.max()), 1.0)
        self.assertGreaterEqual(float(prep.tensor.min()), 0.0)

    def test_grayscale_and_alpha_are_accepted(self) -> None:
        self.assertEqual(as_bgr_image(np.zeros((5, 7), dtype=np.uint8)).shape, (5, 7, 3))
        self.assertEqual(as_bgr_image(np.zeros((5, 7, 4), dtype=np.uint8)).shape, (5, 7, 3))

    def test_invalid_raster(self) -> None:
        with self.assertRaises(InvalidRasterError):
            as_bgr_image("not an image")  # type: ignore[arg-type]
        with self.assertRaises(InvalidRasterError):
            as_bgr_image(np.zeros((0, 10, 3), dtype=np.uint8))
        with self.assertRaises(InvalidRasterError):
            as_bgr_image(np.zeros((10, 10, 2), dtype=np.uint8))
        with self.assertRaises(InvalidRasterError):
            compute_transform(0, 10)


if __name__ == "__main__":
    unittest.main()

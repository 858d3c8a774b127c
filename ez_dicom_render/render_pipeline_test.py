# Copyright 2023 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================
"""Tests for render pipeline."""
from absl.testing import absltest
from absl.testing import parameterized
from ez_dicom_render import ez_dicom_render_errors
from ez_dicom_render import image_frame
from ez_dicom_render import render_cache
from ez_dicom_render import render_pipeline
from ez_dicom_render import shaders
from ez_dicom_render.test_utils import gpu_device_mock
import numpy as np
import wgpu


def _grayscale_frame(
    pixel_data: np.ndarray,
    rows: int,
    columns: int,
    photometric_interpretation: str = 'MONOCHROME2',
    window_center: float = 128.0,
    window_width: float = 256.0,
    rescale_slope: float = 1.0,
    rescale_intercept: float = 0.0,
) -> image_frame.ImageFrame:
  bits_allocated = pixel_data.dtype.itemsize * 8
  return image_frame.ImageFrame(
      samples_per_pixel=1,
      photometric_interpretation=photometric_interpretation,
      planar_configuration=0,
      rows=rows,
      columns=columns,
      bits_allocated=bits_allocated,
      bits_stored=bits_allocated,
      high_bit=bits_allocated - 1,
      rescale_slope=rescale_slope,
      rescale_intercept=rescale_intercept,
      pixel_representation=1 if pixel_data.dtype.kind == 'i' else 0,
      min_pixel_value=int(pixel_data.min()),
      max_pixel_value=int(pixel_data.max()),
      window_center=window_center,
      window_width=window_width,
      pixel_data=pixel_data,
  )


def _rgb_frame(
    pixel_data: np.ndarray, rows: int, columns: int, planar_configuration: int
) -> image_frame.ImageFrame:
  return image_frame.ImageFrame(
      samples_per_pixel=3,
      photometric_interpretation='RGB',
      planar_configuration=planar_configuration,
      rows=rows,
      columns=columns,
      bits_allocated=8,
      bits_stored=8,
      high_bit=7,
      rescale_slope=1.0,
      rescale_intercept=0.0,
      pixel_representation=0,
      min_pixel_value=int(pixel_data.min()),
      max_pixel_value=int(pixel_data.max()),
      window_center=128.0,
      window_width=256.0,
      pixel_data=pixel_data,
  )


def _render_grayscale(frame: image_frame.ImageFrame) -> np.ndarray:
  pipeline = render_pipeline.GrayscalePipeline()
  pipeline.initialize(gpu_device_mock.MockGpuDevice())
  result = pipeline.render(frame)
  return np.frombuffer(result.pixel_data, dtype=np.uint8).reshape(-1, 4)


class GrayscalePipelineTest(parameterized.TestCase):

  def test_initialize_compiles_shader_and_declares_layout(self):
    device = gpu_device_mock.MockGpuDevice()
    pipeline = render_pipeline.GrayscalePipeline()
    pipeline.initialize(device)
    self.assertTrue(pipeline.is_initialized)
    self.assertIs(pipeline.device, device)
    self.assertEqual(device.count('shader_module'), 1)
    self.assertEqual(device.count('compute_pipeline'), 1)
    (layout,) = [
        obj for obj in device.objects if obj.kind == 'bind_group_layout'
    ]
    entries = layout.descriptor['entries']
    self.assertEqual(
        [entry['buffer']['type'] for entry in entries],
        [
            wgpu.BufferBindingType.read_only_storage,
            wgpu.BufferBindingType.storage,
        ],
    )

  def test_initialize_is_idempotent(self):
    device = gpu_device_mock.MockGpuDevice()
    pipeline = render_pipeline.GrayscalePipeline()
    pipeline.initialize(device)
    pipeline.initialize(device)
    self.assertEqual(device.count('shader_module'), 1)

  def test_initialize_without_device_raises(self):
    with self.assertRaises(ez_dicom_render_errors.GpuDeviceRequiredError):
      render_pipeline.GrayscalePipeline().initialize(None)

  def test_render_before_initialize_raises(self):
    frame = _grayscale_frame(np.zeros(4, dtype=np.uint8), 2, 2)
    with self.assertRaises(ez_dicom_render_errors.PipelineNotInitializedError):
      render_pipeline.GrayscalePipeline().render(frame)

  def test_monochrome2_16bit_center_sample(self):
    frame = _grayscale_frame(np.full(4, 128, dtype='<u2'), 2, 2)
    rgba = _render_grayscale(frame)
    self.assertTrue(np.all(rgba[:, :3] >= 127))
    self.assertTrue(np.all(rgba[:, :3] <= 128))
    self.assertTrue(np.all(rgba[:, 3] == 255))

  def test_monochrome1_is_inverted(self):
    pixels = np.array([0, 64, 192, 255], dtype=np.uint8)
    mono2 = _render_grayscale(_grayscale_frame(pixels, 2, 2))
    mono1 = _render_grayscale(
        _grayscale_frame(
            pixels, 2, 2, photometric_interpretation='MONOCHROME1'
        )
    )
    np.testing.assert_array_equal(
        mono1[:, :3].astype(int), 255 - mono2[:, :3].astype(int)
    )
    self.assertTrue(np.all(mono1[:, 3] == 255))

  def test_window_clamps_to_display_range(self):
    pixels = np.array([-2000, -100, 100, 2000], dtype='<i2')
    rgba = _render_grayscale(
        _grayscale_frame(pixels, 2, 2, window_center=0, window_width=400)
    )
    self.assertEqual(rgba[0, 0], 0)
    self.assertEqual(rgba[3, 0], 255)
    self.assertTrue(0 < rgba[1, 0] < rgba[2, 0] < 255)

  def test_rescale_applied_before_window(self):
    pixels = np.array([0, 10, 20, 30], dtype=np.uint8)
    rescaled = _render_grayscale(
        _grayscale_frame(
            pixels,
            2,
            2,
            rescale_slope=2.0,
            rescale_intercept=-10.0,
            window_center=25.0,
            window_width=70.0,
        )
    )
    direct = _render_grayscale(
        _grayscale_frame(
            pixels * 2,
            2,
            2,
            window_center=35.0,
            window_width=70.0,
        )
    )
    np.testing.assert_array_equal(rescaled, direct)

  def test_unit_window_width_thresholds_at_center(self):
    pixels = np.array([99, 100, 101, 102], dtype=np.uint8)
    rgba = _render_grayscale(
        _grayscale_frame(pixels, 2, 2, window_center=100.5, window_width=1)
    )
    self.assertEqual(list(rgba[:, 0]), [0, 0, 255, 255])

  @parameterized.parameters(['MONOCHROME1', 'MONOCHROME2'])
  def test_render_is_deterministic(self, photometric_interpretation):
    pixels = (np.arange(17 * 33, dtype=np.uint16) * 7) % 4096
    frame = _grayscale_frame(
        pixels,
        17,
        33,
        photometric_interpretation=photometric_interpretation,
        window_center=2048,
        window_width=4096,
    )
    device = gpu_device_mock.MockGpuDevice()
    pipeline = render_pipeline.GrayscalePipeline()
    pipeline.initialize(device)
    self.assertEqual(
        pipeline.render(frame).pixel_data, pipeline.render(frame).pixel_data
    )

  def test_render_buffers_and_dispatch(self):
    frame = _grayscale_frame(np.arange(17 * 33, dtype='<u2'), 17, 33)
    device = gpu_device_mock.MockGpuDevice()
    pipeline = render_pipeline.GrayscalePipeline()
    pipeline.initialize(device)
    result = pipeline.render(frame)
    self.assertEqual((result.width, result.height), (33, 17))
    self.assertLen(result.pixel_data, 17 * 33 * 4)
    self.assertGreaterEqual(result.elapsed_time, 0)
    input_buffer, output_buffer, staging_buffer = device.buffers
    self.assertEqual(input_buffer.size % 16, 0)
    self.assertGreaterEqual(
        input_buffer.size, shaders.GRAYSCALE_HEADER_SIZE + 17 * 33 * 4
    )
    self.assertEqual(output_buffer.size, 17 * 33 * 4)
    self.assertEqual(staging_buffer.size, 17 * 33 * 4)
    self.assertEqual(device.live_buffers, [])
    self.assertFalse(staging_buffer.mapped)

  def test_input_buffer_header(self):
    frame = _grayscale_frame(
        np.array([1, 2, 3, 4, 5, 6], dtype='<u2'),
        2,
        3,
        photometric_interpretation='MONOCHROME1',
        window_center=40.0,
        window_width=80.0,
        rescale_slope=2.0,
        rescale_intercept=-3.0,
    )
    device = gpu_device_mock.MockGpuDevice()
    pipeline = render_pipeline.GrayscalePipeline()
    pipeline.initialize(device)
    pipeline.render(frame)
    data = bytes(device.buffers[0].data)
    self.assertEqual(list(np.frombuffer(data, '<u4', 2)), [3, 2])
    np.testing.assert_array_equal(
        np.frombuffer(data, '<f4', 6, 8), [2.0, -3.0, 39.5, 79.0, 0.0, 1.0]
    )
    np.testing.assert_array_equal(
        np.frombuffer(data, '<f4', 6, 32), [1, 2, 3, 4, 5, 6]
    )

  def test_buffers_destroyed_when_submit_fails(self):
    frame = _grayscale_frame(np.zeros(4, dtype=np.uint8), 2, 2)
    device = gpu_device_mock.MockGpuDevice(submit_error=RuntimeError('lost'))
    pipeline = render_pipeline.GrayscalePipeline()
    pipeline.initialize(device)
    with self.assertRaises(RuntimeError):
      pipeline.render(frame)
    self.assertLen(device.buffers, 3)
    self.assertEqual(device.live_buffers, [])

  def test_multi_sample_frame_raises(self):
    frame = _rgb_frame(np.zeros(12, dtype=np.uint8), 2, 2, 0)
    pipeline = render_pipeline.GrayscalePipeline()
    pipeline.initialize(gpu_device_mock.MockGpuDevice())
    with self.assertRaises(ez_dicom_render_errors.UnsupportedPixelFormatError):
      pipeline.render(frame)

  def test_release(self):
    pipeline = render_pipeline.GrayscalePipeline()
    pipeline.initialize(gpu_device_mock.MockGpuDevice())
    pipeline.release()
    self.assertFalse(pipeline.is_initialized)


class GrayscalePipelineWgpuTest(parameterized.TestCase):
  """Runs the grayscale shader on a wgpu software (fallback) adapter."""

  @classmethod
  def setUpClass(cls):
    super().setUpClass()
    try:
      adapter = wgpu.gpu.request_adapter_sync(
          power_preference='low-power', force_fallback_adapter=True
      )
    except RuntimeError:
      adapter = None
    cls._device = None if adapter is None else adapter.request_device_sync()

  def setUp(self):
    super().setUp()
    if self._device is None:
      self.skipTest('No wgpu fallback adapter available.')

  @parameterized.named_parameters([
      dict(
          testcase_name='monochrome2_16bit',
          pixels=(np.arange(18 * 20, dtype=np.uint16) * 13) % 4096,
          photometric_interpretation='MONOCHROME2',
          rescale_slope=1.0,
          rescale_intercept=0.0,
          window_center=2048.0,
          window_width=4096.0,
      ),
      dict(
          testcase_name='monochrome1_signed_rescaled',
          pixels=(np.arange(18 * 20, dtype=np.int16) * 11) - 1500,
          photometric_interpretation='MONOCHROME1',
          rescale_slope=2.0,
          rescale_intercept=-1024.0,
          window_center=40.0,
          window_width=400.0,
      ),
      dict(
          testcase_name='unit_width_threshold',
          pixels=np.arange(18 * 20, dtype=np.uint16) % 256,
          photometric_interpretation='MONOCHROME2',
          rescale_slope=1.0,
          rescale_intercept=0.0,
          window_center=128.5,
          window_width=1.0,
      ),
  ])
  def test_shader_matches_mock_device(
      self,
      pixels,
      photometric_interpretation,
      rescale_slope,
      rescale_intercept,
      window_center,
      window_width,
  ):
    frame = _grayscale_frame(
        pixels,
        18,
        20,
        photometric_interpretation=photometric_interpretation,
        window_center=window_center,
        window_width=window_width,
        rescale_slope=rescale_slope,
        rescale_intercept=rescale_intercept,
    )
    pipeline = render_pipeline.GrayscalePipeline()
    pipeline.initialize(self._device)
    gpu_rgba = np.frombuffer(
        pipeline.render(frame).pixel_data, dtype=np.uint8
    ).reshape(-1, 4)
    expected_rgba = _render_grayscale(frame)
    np.testing.assert_array_equal(gpu_rgba[:, 3], 255)
    np.testing.assert_allclose(
        gpu_rgba.astype(int), expected_rgba.astype(int), atol=1
    )


class ColorRgbPipelineTest(parameterized.TestCase):

  def test_interleaved_2x2_rgb(self):
    pixels = np.arange(12, dtype=np.uint8) * 20
    pipeline = render_pipeline.ColorRgbPipeline()
    pipeline.initialize(gpu_device_mock.MockGpuDevice())
    result = pipeline.render(_rgb_frame(pixels, 2, 2, 0))
    self.assertLen(result.pixel_data, 16)
    rgba = np.frombuffer(result.pixel_data, dtype=np.uint8).reshape(4, 4)
    np.testing.assert_array_equal(rgba[:, :3], pixels.reshape(4, 3))
    self.assertTrue(np.all(rgba[:, 3] == 255))

  def test_planar_matches_interleaved(self):
    interleaved = np.arange(3 * 4 * 5, dtype=np.uint8) * 3
    planar = interleaved.reshape(-1, 3).T.reshape(-1).copy()
    pipeline = render_pipeline.ColorRgbPipeline()
    pipeline.initialize(gpu_device_mock.MockGpuDevice())
    self.assertEqual(
        pipeline.render(_rgb_frame(interleaved, 4, 5, 0)).pixel_data,
        pipeline.render(_rgb_frame(planar, 4, 5, 1)).pixel_data,
    )

  def test_monochrome_frame_raises(self):
    pipeline = render_pipeline.ColorRgbPipeline()
    pipeline.initialize(gpu_device_mock.MockGpuDevice())
    with self.assertRaises(ez_dicom_render_errors.UnsupportedPixelFormatError):
      pipeline.render(_grayscale_frame(np.zeros(4, dtype=np.uint8), 2, 2))

  def test_render_before_initialize_raises(self):
    with self.assertRaises(ez_dicom_render_errors.PipelineNotInitializedError):
      render_pipeline.ColorRgbPipeline().render(
          _rgb_frame(np.zeros(12, dtype=np.uint8), 2, 2, 0)
      )


class CreatePipelineTest(parameterized.TestCase):

  @parameterized.parameters([
      ('MONOCHROME1', render_pipeline.GrayscalePipeline),
      ('MONOCHROME2', render_pipeline.GrayscalePipeline),
  ])
  def test_create_grayscale_pipeline(self, photometric_interpretation, cls):
    device = gpu_device_mock.MockGpuDevice()
    cache = render_cache.PipelineCache(5)
    frame = _grayscale_frame(
        np.zeros(4, dtype=np.uint8),
        2,
        2,
        photometric_interpretation=photometric_interpretation,
    )
    pipeline = render_pipeline.create_pipeline(device, frame, cache)
    self.assertIsInstance(pipeline, cls)
    self.assertTrue(pipeline.is_initialized)
    self.assertIn(photometric_interpretation, cache)

  def test_create_rgb_pipeline(self):
    pipeline = render_pipeline.create_pipeline(
        gpu_device_mock.MockGpuDevice(),
        _rgb_frame(np.zeros(12, dtype=np.uint8), 2, 2, 0),
        render_cache.PipelineCache(5),
    )
    self.assertIsInstance(pipeline, render_pipeline.ColorRgbPipeline)

  def test_cached_pipeline_reused_for_same_device(self):
    device = gpu_device_mock.MockGpuDevice()
    cache = render_cache.PipelineCache(5)
    frame = _grayscale_frame(np.zeros(4, dtype=np.uint8), 2, 2)
    first = render_pipeline.create_pipeline(device, frame, cache)
    second = render_pipeline.create_pipeline(device, frame, cache)
    self.assertIs(first, second)
    self.assertEqual(device.count('shader_module'), 1)

  def test_cached_pipeline_rebuilt_for_new_device(self):
    cache = render_cache.PipelineCache(5)
    frame = _grayscale_frame(np.zeros(4, dtype=np.uint8), 2, 2)
    first = render_pipeline.create_pipeline(
        gpu_device_mock.MockGpuDevice(), frame, cache
    )
    device = gpu_device_mock.MockGpuDevice()
    second = render_pipeline.create_pipeline(device, frame, cache)
    self.assertIsNot(first, second)
    self.assertIs(second.device, device)
    self.assertFalse(first.is_initialized)
    self.assertLen(cache, 1)

  @parameterized.parameters(['', 'YBR_FULL', 'PALETTE COLOR'])
  def test_unsupported_photometric_interpretation_raises(
      self, photometric_interpretation
  ):
    frame = _grayscale_frame(
        np.zeros(4, dtype=np.uint8),
        2,
        2,
        photometric_interpretation=photometric_interpretation,
    )
    with self.assertRaises(
        ez_dicom_render_errors.UnsupportedPhotometricInterpretationError
    ):
      render_pipeline.create_pipeline(
          gpu_device_mock.MockGpuDevice(),
          frame,
          render_cache.PipelineCache(5),
      )


if __name__ == '__main__':
  absltest.main()

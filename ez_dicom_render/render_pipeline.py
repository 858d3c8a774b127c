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
"""Render pipelines which convert image frames to RGBA pixels."""
import abc
import dataclasses
import enum
import math
import time
from typing import Any, Mapping, Optional, Type

from ez_dicom_render import ez_dicom_render_errors
from ez_dicom_render import image_frame
from ez_dicom_render import pixel_utils
from ez_dicom_render import render_cache
from ez_dicom_render import shaders
import numpy as np
import wgpu

_RGBA_BYTES_PER_PIXEL = 4
_BUFFER_ALIGNMENT = 16


class PhotometricInterpretation(enum.Enum):
  MONOCHROME1 = 'MONOCHROME1'
  MONOCHROME2 = 'MONOCHROME2'
  RGB = 'RGB'


@dataclasses.dataclass(frozen=True)
class RenderResult:
  """RGBA pixels rendered from an image frame.

  Attributes:
    pixel_data: RGBA bytes, 4 per pixel, row major.
    width: Image width in pixels.
    height: Image height in pixels.
    elapsed_time: Seconds spent rendering.
  """

  pixel_data: Optional[bytes]
  width: Optional[int]
  height: Optional[int]
  elapsed_time: float = 0.0


class Pipeline(metaclass=abc.ABCMeta):
  """Converts image frames of one photometric interpretation to RGBA."""

  def __init__(self):
    self._device = None

  @property
  def device(self) -> Any:
    return self._device

  @property
  def is_initialized(self) -> bool:
    return self._device is not None

  def initialize(self, device: Any) -> None:
    """Binds pipeline to a GPU device; subsequent calls have no effect."""
    if self._device is not None:
      return
    if device is None:
      raise ez_dicom_render_errors.GpuDeviceRequiredError()
    self._initialize(device)
    self._device = device

  @abc.abstractmethod
  def _initialize(self, device: Any) -> None:
    """Creates device resources shared by all renders."""

  @abc.abstractmethod
  def _render(self, frame: image_frame.ImageFrame) -> bytes:
    """Returns RGBA bytes for frame."""

  def render(self, frame: image_frame.ImageFrame) -> RenderResult:
    """Renders image frame to RGBA pixels.

    Args:
      frame: Image frame to render.

    Returns:
      RenderResult

    Raises:
      ez_dicom_render_errors.PipelineNotInitializedError: Pipeline not
        initialized.
    """
    if not self.is_initialized:
      raise ez_dicom_render_errors.PipelineNotInitializedError()
    start_time = time.time()
    pixel_data = self._render(frame)
    return RenderResult(
        pixel_data=pixel_data,
        width=frame.columns,
        height=frame.rows,
        elapsed_time=time.time() - start_time,
    )

  def release(self) -> None:
    self._device = None


def _grayscale_input_data(frame: image_frame.ImageFrame) -> bytes:
  """Returns header followed by float32 samples, padded to 16 bytes."""
  header = np.zeros(shaders.GRAYSCALE_HEADER_SIZE // 4, dtype='<f4')
  header[2:] = (
      frame.rescale_slope,
      frame.rescale_intercept,
      frame.window_center - 0.5,
      frame.window_width - 1.0,
      0.0,
      1.0
      if frame.photometric_interpretation
      == PhotometricInterpretation.MONOCHROME1.value
      else 0.0,
  )
  header.view('<u4')[:2] = (frame.columns, frame.rows)
  samples = pixel_utils.to_float32(frame.pixel_data).astype('<f4', copy=False)
  data = header.tobytes() + samples.tobytes()
  return data + bytes(-len(data) % _BUFFER_ALIGNMENT)


class GrayscalePipeline(Pipeline):
  """Renders MONOCHROME1 and MONOCHROME2 frames with a compute shader."""

  def __init__(self):
    super().__init__()
    self._bind_group_layout = None
    self._compute_pipeline = None

  def _initialize(self, device: Any) -> None:
    shader_module = device.create_shader_module(
        label='grayscale',
        code=shaders.minify_shader(shaders.GRAYSCALE_SHADER),
    )
    self._bind_group_layout = device.create_bind_group_layout(
        entries=[
            {
                'binding': 0,
                'visibility': wgpu.ShaderStage.COMPUTE,
                'buffer': {'type': wgpu.BufferBindingType.read_only_storage},
            },
            {
                'binding': 1,
                'visibility': wgpu.ShaderStage.COMPUTE,
                'buffer': {'type': wgpu.BufferBindingType.storage},
            },
        ]
    )
    pipeline_layout = device.create_pipeline_layout(
        bind_group_layouts=[self._bind_group_layout]
    )
    self._compute_pipeline = device.create_compute_pipeline(
        layout=pipeline_layout,
        compute={'module': shader_module, 'entry_point': 'main'},
    )

  def _render(self, frame: image_frame.ImageFrame) -> bytes:
    if frame.samples_per_pixel != 1:
      raise ez_dicom_render_errors.UnsupportedPixelFormatError(
          'Grayscale frames require 1 sample per pixel; frame has'
          f' {frame.samples_per_pixel}.'
      )
    device = self._device
    input_data = _grayscale_input_data(frame)
    output_size = frame.rows * frame.columns * _RGBA_BYTES_PER_PIXEL
    buffers = []
    try:
      input_buffer = device.create_buffer(
          label='image_frame',
          size=len(input_data),
          usage=wgpu.BufferUsage.STORAGE | wgpu.BufferUsage.COPY_DST,
      )
      buffers.append(input_buffer)
      output_buffer = device.create_buffer(
          label='rgba_pixels',
          size=output_size,
          usage=wgpu.BufferUsage.STORAGE | wgpu.BufferUsage.COPY_SRC,
      )
      buffers.append(output_buffer)
      staging_buffer = device.create_buffer(
          label='rgba_pixels_staging',
          size=output_size,
          usage=wgpu.BufferUsage.MAP_READ | wgpu.BufferUsage.COPY_DST,
      )
      buffers.append(staging_buffer)
      device.queue.write_buffer(input_buffer, 0, input_data)
      bind_group = device.create_bind_group(
          layout=self._bind_group_layout,
          entries=[
              {
                  'binding': 0,
                  'resource': {
                      'buffer': input_buffer,
                      'offset': 0,
                      'size': input_buffer.size,
                  },
              },
              {
                  'binding': 1,
                  'resource': {
                      'buffer': output_buffer,
                      'offset': 0,
                      'size': output_buffer.size,
                  },
              },
          ],
      )
      command_encoder = device.create_command_encoder()
      compute_pass = command_encoder.begin_compute_pass()
      compute_pass.set_pipeline(self._compute_pipeline)
      compute_pass.set_bind_group(0, bind_group)
      compute_pass.dispatch_workgroups(
          math.ceil(frame.columns / shaders.WORKGROUP_SIZE),
          math.ceil(frame.rows / shaders.WORKGROUP_SIZE),
          1,
      )
      compute_pass.end()
      command_encoder.copy_buffer_to_buffer(
          output_buffer, 0, staging_buffer, 0, output_size
      )
      device.queue.submit([command_encoder.finish()])
      staging_buffer.map_sync(wgpu.MapMode.READ)
      try:
        return bytes(staging_buffer.read_mapped())
      finally:
        staging_buffer.unmap()
    finally:
      for buffer in buffers:
        buffer.destroy()

  def release(self) -> None:
    super().release()
    self._bind_group_layout = None
    self._compute_pipeline = None


class ColorRgbPipeline(Pipeline):
  """Converts RGB frames to RGBA on the CPU."""

  def _initialize(self, device: Any) -> None:
    del device

  def _render(self, frame: image_frame.ImageFrame) -> bytes:
    if frame.samples_per_pixel != 3:
      raise ez_dicom_render_errors.UnsupportedPixelFormatError(
          'RGB frames require 3 samples per pixel; frame has'
          f' {frame.samples_per_pixel}.'
      )
    pixel_count = frame.rows * frame.columns
    if frame.planar_configuration == 1:
      rgb = frame.pixel_data.reshape(3, pixel_count).T
    else:
      rgb = frame.pixel_data.reshape(pixel_count, 3)
    rgba = np.full((pixel_count, 4), 255, dtype=np.uint8)
    rgba[:, :3] = np.clip(rgb, 0, 255)
    return rgba.tobytes()


_PIPELINES: Mapping[PhotometricInterpretation, Type[Pipeline]] = {
    PhotometricInterpretation.MONOCHROME1: GrayscalePipeline,
    PhotometricInterpretation.MONOCHROME2: GrayscalePipeline,
    PhotometricInterpretation.RGB: ColorRgbPipeline,
}


def create_pipeline(
    device: Any,
    frame: image_frame.ImageFrame,
    cache: render_cache.PipelineCache,
) -> Pipeline:
  """Returns initialized pipeline for frame's photometric interpretation.

  A cached pipeline is reused if it was initialized for the same device.

  Args:
    device: GPU device, e.g. wgpu.GPUDevice.
    frame: Image frame to render.
    cache: Pipelines keyed by photometric interpretation.

  Returns:
    Pipeline

  Raises:
    ez_dicom_render_errors.UnsupportedPhotometricInterpretationError:
      Photometric interpretation missing or not supported.
  """
  if not frame.photometric_interpretation:
    raise ez_dicom_render_errors.UnsupportedPhotometricInterpretationError(
        'Photometric interpretation is missing.'
    )
  try:
    category = PhotometricInterpretation(frame.photometric_interpretation)
  except ValueError as exp:
    raise ez_dicom_render_errors.UnsupportedPhotometricInterpretationError(
        'Unsupported photometric interpretation:'
        f' {frame.photometric_interpretation}.'
    ) from exp
  pipeline = cache.get(category.value)
  if pipeline is not None and pipeline.device is device:
    return pipeline
  pipeline = _PIPELINES[category]()
  pipeline.initialize(device)
  cache.set(category.value, pipeline)
  return pipeline

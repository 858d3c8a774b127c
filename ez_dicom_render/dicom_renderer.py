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
"""Decodes a frame of a DICOM instance and renders it to RGBA pixels.

Example:

  device = wgpu.gpu.request_adapter_sync().request_device_sync()
  renderer = dicom_renderer.DicomRenderer()
  renderer.initialize()
  result = renderer.render(device, dicom_bytes, frame_index=0, cache_key='a')
"""
import time
from typing import Any, Mapping, Optional
import uuid

from ez_dicom_render import codec_backend as codec_backend_module
from ez_dicom_render import dicom_frame_decoder
from ez_dicom_render import ez_dicom_render_errors
from ez_dicom_render import ez_dicom_render_logging_factory
from ez_dicom_render import image_frame
from ez_dicom_render import render_cache
from ez_dicom_render import render_config
from ez_dicom_render import render_pipeline

_LogKeywords = ez_dicom_render_logging_factory.LogKeywords


class DicomRenderer:
  """Renders single frames of DICOM instances on a GPU device.

  The renderer owns a cache of decoded image frames keyed by a caller supplied
  key and a cache of initialized render pipelines keyed by photometric
  interpretation. Calls are expected from a single thread; concurrent renders
  sharing a cache key may decode the frame more than once.
  """

  def __init__(
      self,
      config: Optional[render_config.RendererConfig] = None,
      logging_factory: Optional[
          ez_dicom_render_logging_factory.AbstractLoggingInterfaceFactory
      ] = None,
      frame_cache: Optional[render_cache.FrameCache] = None,
      pipeline_cache: Optional[render_cache.PipelineCache] = None,
      codec_backend: Optional[codec_backend_module.CodecBackend] = None,
  ):
    """Constructor.

    Args:
      config: Cache sizes and codec module; defaults to RendererConfig().
      logging_factory: Factory to create logging interface defaults to Python
        logger.
      frame_cache: Decoded frame cache; created from config if None.
      pipeline_cache: Render pipeline cache; created from config if None.
      codec_backend: Codec backend; loaded by initialize if None.
    """
    self._config = (
        render_config.RendererConfig() if config is None else config
    )
    if logging_factory is None:
      logging_factory = (
          ez_dicom_render_logging_factory.BasePythonLoggerFactory()
      )
    self._renderer_instance_uid = str(uuid.uuid1())
    self._logger = logging_factory.create_logger(
        {_LogKeywords.RENDERER_INSTANCE_UID: self._renderer_instance_uid}
    )
    self._frame_cache = (
        render_cache.FrameCache(self._config.frame_cache_capacity)
        if frame_cache is None
        else frame_cache
    )
    self._pipeline_cache = (
        render_cache.PipelineCache(self._config.pipeline_cache_capacity)
        if pipeline_cache is None
        else pipeline_cache
    )
    self._frame_decoder = dicom_frame_decoder.FrameDecoder(
        codec_backend, self._logger
    )

  @property
  def config(self) -> render_config.RendererConfig:
    return self._config

  @property
  def is_initialized(self) -> bool:
    return self._frame_decoder.is_initialized

  @property
  def frame_cache(self) -> render_cache.FrameCache:
    return self._frame_cache

  @property
  def pipeline_cache(self) -> render_cache.PipelineCache:
    return self._pipeline_cache

  @property
  def frame_decoder(self) -> dicom_frame_decoder.FrameDecoder:
    return self._frame_decoder

  def initialize(self, options: Optional[Mapping[str, Any]] = None) -> None:
    """Loads the codec backend used to decode compressed frames.

    Args:
      options: Optional settings; 'codec_module_name' selects the codec
        module.

    Raises:
      ez_dicom_render_errors.CodecBackendLoadError: Codec module cannot be
        loaded.
    """
    config = self._config.with_options(options)
    if self._frame_decoder.is_initialized and config == self._config:
      return
    start_time = time.time()
    backend = codec_backend_module.CodecBackend.load(
        config.codec_module_name, self._logger
    )
    self._frame_decoder.set_backend(backend)
    self._config = config
    self._logger.debug(
        'Codec backend initialized.',
        {'codec_module_name': config.codec_module_name},
        ez_dicom_render_logging_factory.log_elapsed_time(start_time),
    )

  def _get_image_frame(
      self, dicom_bytes: bytes, frame_index: int, cache_key: Optional[str]
  ) -> image_frame.ImageFrame:
    """Returns cached image frame or decodes and caches it."""
    if cache_key:
      frame = self._frame_cache.get(cache_key)
      if frame is not None:
        self._logger.debug(
            'Image frame cache hit.', {_LogKeywords.CACHE_KEY: cache_key}
        )
        return frame
    start_time = time.time()
    frame = image_frame.create_image_frame(
        dicom_bytes, frame_index, self._frame_decoder
    )
    self._logger.debug(
        'Decoded image frame.',
        {
            _LogKeywords.CACHE_KEY: cache_key,
            _LogKeywords.FRAME_INDEX: frame_index,
            _LogKeywords.DECODE_COUNT: self._frame_decoder.decode_count,
        },
        ez_dicom_render_logging_factory.log_elapsed_time(start_time),
    )
    if cache_key:
      self._frame_cache.set(cache_key, frame)
    return frame

  def render(
      self,
      gpu_device: Any,
      dicom_bytes: bytes,
      frame_index: int = 0,
      cache_key: Optional[str] = None,
  ) -> render_pipeline.RenderResult:
    """Renders one frame of a DICOM instance to RGBA pixels.

    Args:
      gpu_device: GPU device, e.g. wgpu.GPUDevice.
      dicom_bytes: DICOM Part 10 instance bytes.
      frame_index: Zero based index of frame to render.
      cache_key: Optional key under which the decoded frame is cached; an
        empty key disables caching. A cached frame is returned for the key
        regardless of dicom_bytes and frame_index.

    Returns:
      RenderResult

    Raises:
      ez_dicom_render_errors.GpuDeviceRequiredError: No GPU device.
      ez_dicom_render_errors.DicomDataRequiredError: No DICOM bytes.
      ez_dicom_render_errors.FrameIndexOutOfRangeError: Invalid frame index.
      ez_dicom_render_errors.EZDicomRenderError: Frame cannot be decoded or
        rendered.
    """
    if gpu_device is None:
      raise ez_dicom_render_errors.GpuDeviceRequiredError()
    if not dicom_bytes:
      raise ez_dicom_render_errors.DicomDataRequiredError()
    if (
        not isinstance(frame_index, int)
        or isinstance(frame_index, bool)
        or frame_index < 0
    ):
      raise ez_dicom_render_errors.FrameIndexOutOfRangeError(
          f'Frame index must be an integer >= 0; received: {frame_index}.'
      )
    start_time = time.time()
    frame = self._get_image_frame(dicom_bytes, frame_index, cache_key)
    pipeline = render_pipeline.create_pipeline(
        gpu_device, frame, self._pipeline_cache
    )
    result = pipeline.render(frame)
    self._logger.debug(
        'Rendered image frame.',
        {
            _LogKeywords.PHOTOMETRIC_INTERPRETATION: (
                frame.photometric_interpretation
            ),
            _LogKeywords.IMAGE_WIDTH: result.width,
            _LogKeywords.IMAGE_HEIGHT: result.height,
        },
        ez_dicom_render_logging_factory.log_elapsed_time(start_time),
    )
    return result

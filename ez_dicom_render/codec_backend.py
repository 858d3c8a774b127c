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
"""Context based adapter around the imagecodecs decompression library.

A decode is driven through a CodecContext: the caller creates a context,
sets the frame attributes and encoded bytes, invokes exactly one codec
entry point, reads the (possibly revised) attributes and decoded bytes back
and releases the context. Codec entry points never raise codec errors; they
are recorded in the context's exception channel and must be checked by the
caller after the entry point returns.
"""
from __future__ import annotations

import dataclasses
import functools
import importlib
import types
from typing import Any, Callable, Optional

from ez_dicom_render import ez_dicom_render_errors
from ez_dicom_render import ez_dicom_render_logging_factory
import numpy as np

# imagecodecs codec classes used by the entry points.
_REQUIRED_CODECS = ('JPEG8', 'LJPEG', 'JPEGLS', 'JPEG2K', 'PACKBITS')

_RLE_HEADER_LENGTH = 64
_RLE_MAX_SEGMENTS = 15

_YBR_PHOTOMETRIC_INTERPRETATIONS = frozenset(
    ['YBR_FULL', 'YBR_FULL_422', 'YBR_PARTIAL_420', 'YBR_PARTIAL_422']
)
_J2K_COMPONENT_TRANSFORM_PHOTOMETRIC_INTERPRETATIONS = frozenset(
    ['YBR_RCT', 'YBR_ICT']
)
_RGB = 'RGB'


@dataclasses.dataclass
class CodecContext:
  """Frame attributes and buffers exchanged with a codec entry point."""

  columns: int = 0
  rows: int = 0
  bits_allocated: int = 0
  bits_stored: int = 0
  samples_per_pixel: int = 0
  pixel_representation: int = 0
  planar_configuration: int = 0
  photometric_interpretation: str = ''
  encoded_buffer: bytes = b''
  decoded_buffer: bytes = b''
  # Out-of-band channel holding the exception raised by the codec.
  exception: Optional[Exception] = None
  released: bool = False


@dataclasses.dataclass(frozen=True)
class DecoderParameters:
  convert_colorspace_to_rgb: bool = False


_EntryPoint = Callable[['CodecBackend', CodecContext, DecoderParameters], None]


def _report_codec_exception(entry_point: _EntryPoint) -> _EntryPoint:
  """Records exceptions raised by a codec entry point in its context."""

  @functools.wraps(entry_point)
  def wrapper(
      self: CodecBackend, ctx: CodecContext, params: DecoderParameters
  ) -> None:
    if ctx.released:
      raise ez_dicom_render_errors.ConfigurationError(
          'Codec context has been released.'
      )
    try:
      entry_point(self, ctx, params)
    except Exception as exp:  # pylint: disable=broad-exception-caught
      ctx.exception = exp
      ctx.decoded_buffer = b''

  return wrapper


def _store_decoded_array(ctx: CodecContext, decoded: Any) -> None:
  """Normalizes decoded image to interleaved little endian bytes."""
  decoded = np.asarray(decoded)
  if decoded.ndim == 3 and decoded.shape[2] == 1:
    decoded = decoded[..., 0]
  if decoded.ndim not in (2, 3):
    raise ValueError(f'Unexpected decoded image shape: {decoded.shape}.')
  if ctx.bits_allocated > 8 or decoded.dtype.itemsize > 1:
    dtype = np.dtype('<i2' if ctx.pixel_representation == 1 else '<u2')
  else:
    dtype = np.uint8
  decoded = np.ascontiguousarray(decoded, dtype=dtype)
  ctx.rows, ctx.columns = decoded.shape[:2]
  ctx.samples_per_pixel = decoded.shape[2] if decoded.ndim == 3 else 1
  if ctx.samples_per_pixel > 1:
    ctx.planar_configuration = 0
  ctx.decoded_buffer = decoded.tobytes()


class CodecBackend:
  """Decodes compressed DICOM frames using an imagecodecs like module."""

  def __init__(
      self,
      codecs: types.ModuleType,
      logger: Optional[
          ez_dicom_render_logging_factory.AbstractLoggingInterface
      ] = None,
  ):
    self._codecs = codecs
    self._logger = logger

  @classmethod
  def load(
      cls,
      module_name: str,
      logger: Optional[
          ez_dicom_render_logging_factory.AbstractLoggingInterface
      ] = None,
  ) -> CodecBackend:
    """Imports codec module and verifies it started correctly.

    Args:
      module_name: Name of module to import, e.g. 'imagecodecs'.
      logger: Optional logger.

    Returns:
      CodecBackend

    Raises:
      ez_dicom_render_errors.CodecBackendLoadError: Module cannot be imported
        or reports an error at startup.
    """
    try:
      codecs = importlib.import_module(module_name)
    except ImportError as exp:
      raise ez_dicom_render_errors.CodecBackendLoadError(
          f'Unable to load codec module: {module_name}.'
      ) from exp
    try:
      version = codecs.version() if hasattr(codecs, 'version') else ''
    except Exception as exp:  # pylint: disable=broad-exception-caught
      raise ez_dicom_render_errors.CodecBackendLoadError(
          f'Codec module {module_name} failed to start: {exp}'
      ) from exp
    backend = cls(codecs, logger)
    unavailable = backend.unavailable_codecs()
    if logger is not None:
      logger.debug('Codec module loaded.', {'codec_module_version': version})
      if unavailable:
        logger.warning(
            'Codec module is missing codecs; frames encoded with these codecs'
            ' cannot be decoded.',
            {'unavailable_codecs': ', '.join(unavailable)},
        )
    return backend

  def unavailable_codecs(self) -> list[str]:
    unavailable = []
    for name in _REQUIRED_CODECS:
      codec = getattr(self._codecs, name, None)
      if codec is None or not getattr(codec, 'available', True):
        unavailable.append(name)
    return unavailable

  def create_context(self) -> CodecContext:
    return CodecContext()

  def release_context(self, ctx: CodecContext) -> None:
    ctx.encoded_buffer = b''
    ctx.decoded_buffer = b''
    ctx.exception = None
    ctx.released = True

  @_report_codec_exception
  def decode_rle(self, ctx: CodecContext, params: DecoderParameters) -> None:
    """Decodes DICOM RLE Lossless frame (PS3.5 Annex G).

    Each segment holds one byte (most significant first) of one sample of
    every pixel and is PackBits encoded.

    Args:
      ctx: Decode context.
      params: Decoder parameters; unused.
    """
    del params
    data = ctx.encoded_buffer
    if len(data) < _RLE_HEADER_LENGTH:
      raise ValueError('RLE frame is shorter than the RLE header.')
    header = np.frombuffer(data[:_RLE_HEADER_LENGTH], dtype='<u4')
    number_of_segments = int(header[0])
    bytes_per_sample = ctx.bits_allocated // 8
    expected_segments = ctx.samples_per_pixel * bytes_per_sample
    if (
        ctx.bits_allocated % 8
        or number_of_segments > _RLE_MAX_SEGMENTS
        or number_of_segments != expected_segments
    ):
      raise ValueError(
          'The number of RLE segments does not match the expected amount'
          f' ({number_of_segments} vs. {expected_segments} segments).'
      )
    offsets = [int(offset) for offset in header[1 : 1 + number_of_segments]]
    offsets.append(len(data))
    pixel_count = ctx.rows * ctx.columns
    planes = np.zeros(
        (ctx.samples_per_pixel, bytes_per_sample, pixel_count), dtype=np.uint8
    )
    for sample in range(ctx.samples_per_pixel):
      for byte_index in range(bytes_per_sample):
        segment_index = sample * bytes_per_sample + byte_index
        segment = np.frombuffer(
            self._codecs.packbits_decode(
                data[offsets[segment_index] : offsets[segment_index + 1]]
            ),
            dtype=np.uint8,
        )
        if segment.size < pixel_count:
          raise ValueError(
              "The amount of decoded RLE segment data doesn't match the"
              f" expected amount ({segment.size} vs. {pixel_count} bytes)."
          )
        planes[sample, bytes_per_sample - byte_index - 1] = segment[
            :pixel_count
        ]
    ctx.decoded_buffer = planes.transpose(2, 0, 1).tobytes()
    ctx.planar_configuration = 0

  @_report_codec_exception
  def decode_jpeg(self, ctx: CodecContext, params: DecoderParameters) -> None:
    """Decodes JPEG baseline, extended, or lossless process 14 frame."""
    if params.convert_colorspace_to_rgb and ctx.samples_per_pixel == 3:
      if ctx.photometric_interpretation in _YBR_PHOTOMETRIC_INTERPRETATIONS:
        colorspace = 'YCBCR'
      else:
        colorspace = _RGB
      decoded = self._codecs.jpeg8_decode(
          ctx.encoded_buffer, colorspace=colorspace, outcolorspace=_RGB
      )
      ctx.photometric_interpretation = _RGB
    elif params.convert_colorspace_to_rgb:
      decoded = self._codecs.jpeg8_decode(ctx.encoded_buffer)
    else:
      decoded = self._codecs.ljpeg_decode(ctx.encoded_buffer)
    _store_decoded_array(ctx, decoded)

  @_report_codec_exception
  def decode_jpeg_ls(
      self, ctx: CodecContext, params: DecoderParameters
  ) -> None:
    del params
    _store_decoded_array(ctx, self._codecs.jpegls_decode(ctx.encoded_buffer))

  @_report_codec_exception
  def decode_jpeg2000(
      self, ctx: CodecContext, params: DecoderParameters
  ) -> None:
    """Decodes JPEG 2000 or High-Throughput JPEG 2000 frame."""
    del params
    _store_decoded_array(ctx, self._codecs.jpeg2k_decode(ctx.encoded_buffer))
    if (
        ctx.photometric_interpretation
        in _J2K_COMPONENT_TRANSFORM_PHOTOMETRIC_INTERPRETATIONS
    ):
      # Decoder applies the inverse multiple component transform.
      ctx.photometric_interpretation = _RGB

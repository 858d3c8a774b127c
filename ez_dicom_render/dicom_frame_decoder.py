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
"""Decodes DICOM frame bytes to uncompressed little endian samples."""
import dataclasses
import enum
from typing import Callable, Mapping, Optional

from ez_dicom_render import codec_backend
from ez_dicom_render import ez_dicom_render_errors
from ez_dicom_render import ez_dicom_render_logging_factory
from ez_dicom_render import pixel_utils


# DICOM Transfer syntax define the encoding of the pixel data in an instance.
# https://www.dicomlibrary.com/dicom/transfer-syntax/
class DicomTransferSyntax(enum.Enum):
  IMPLICIT_VR_LITTLE_ENDIAN = '1.2.840.10008.1.2'
  EXPLICIT_VR_LITTLE_ENDIAN = '1.2.840.10008.1.2.1'
  DEFLATED_EXPLICIT_VR_LITTLE_ENDIAN = '1.2.840.10008.1.2.1.99'
  EXPLICIT_VR_BIG_ENDIAN = '1.2.840.10008.1.2.2'
  RLE_LOSSLESS = '1.2.840.10008.1.2.5'
  JPEG_BASELINE = '1.2.840.10008.1.2.4.50'
  JPEG_EXTENDED = '1.2.840.10008.1.2.4.51'
  JPEG_LOSSLESS = '1.2.840.10008.1.2.4.57'
  JPEG_LOSSLESS_SV1 = '1.2.840.10008.1.2.4.70'
  JPEG_LS_LOSSLESS = '1.2.840.10008.1.2.4.80'
  JPEG_LS_NEAR_LOSSLESS = '1.2.840.10008.1.2.4.81'
  JPEG_2000_LOSSLESS = '1.2.840.10008.1.2.4.90'
  JPEG_2000 = '1.2.840.10008.1.2.4.91'
  HTJ2K_LOSSLESS = '1.2.840.10008.1.2.4.201'
  HTJ2K_LOSSLESS_RPCL = '1.2.840.10008.1.2.4.202'
  HTJ2K = '1.2.840.10008.1.2.4.203'


_LITTLE_ENDIAN_TRANSFER_SYNTAXES = frozenset([
    DicomTransferSyntax.IMPLICIT_VR_LITTLE_ENDIAN.value,
    DicomTransferSyntax.EXPLICIT_VR_LITTLE_ENDIAN.value,
    DicomTransferSyntax.DEFLATED_EXPLICIT_VR_LITTLE_ENDIAN.value,
])

_UNENCAPSULATED_TRANSFER_SYNTAXES = _LITTLE_ENDIAN_TRANSFER_SYNTAXES | {
    DicomTransferSyntax.EXPLICIT_VR_BIG_ENDIAN.value
}

_LOG_KEYWORDS = ez_dicom_render_logging_factory.LogKeywords

_CodecEntryPoint = Callable[
    [codec_backend.CodecContext, codec_backend.DecoderParameters], None
]


@dataclasses.dataclass(frozen=True)
class DecodeRequest:
  width: int
  height: int
  bits_allocated: int
  bits_stored: int
  samples_per_pixel: int
  pixel_representation: int
  planar_configuration: int
  photometric_interpretation: str
  encoded_buffer: Optional[bytes]


@dataclasses.dataclass(frozen=True)
class DecodeResult:
  width: int
  height: int
  bits_allocated: int
  bits_stored: int
  samples_per_pixel: int
  pixel_representation: int
  planar_configuration: int
  photometric_interpretation: str
  decoded_buffer: bytes


def can_decode_transfer_syntax(transfer_syntax: str) -> bool:
  return transfer_syntax in (
      supported_syntax.value for supported_syntax in DicomTransferSyntax
  )


def is_encapsulated_transfer_syntax(transfer_syntax: str) -> bool:
  return (
      can_decode_transfer_syntax(transfer_syntax)
      and transfer_syntax not in _UNENCAPSULATED_TRANSFER_SYNTAXES
  )


def _passthrough_result(
    request: DecodeRequest, decoded_buffer: bytes
) -> DecodeResult:
  return DecodeResult(
      width=request.width,
      height=request.height,
      bits_allocated=request.bits_allocated,
      bits_stored=request.bits_stored,
      samples_per_pixel=request.samples_per_pixel,
      pixel_representation=request.pixel_representation,
      planar_configuration=request.planar_configuration,
      photometric_interpretation=request.photometric_interpretation,
      decoded_buffer=decoded_buffer,
  )


class FrameDecoder:
  """Dispatches frame decoding by transfer syntax."""

  def __init__(
      self,
      backend: Optional[codec_backend.CodecBackend] = None,
      logger: Optional[
          ez_dicom_render_logging_factory.AbstractLoggingInterface
      ] = None,
  ):
    self._backend = backend
    self._logger = logger
    self._decode_count = 0

  @property
  def is_initialized(self) -> bool:
    return self._backend is not None

  @property
  def decode_count(self) -> int:
    """Number of times decode has been called."""
    return self._decode_count

  def set_backend(self, backend: codec_backend.CodecBackend) -> None:
    self._backend = backend

  def _codec_entry_points(self) -> Mapping[str, _CodecEntryPoint]:
    backend = self._backend
    if backend is None:
      raise ez_dicom_render_errors.CodecBackendNotInitializedError()
    return {
        DicomTransferSyntax.RLE_LOSSLESS.value: backend.decode_rle,
        DicomTransferSyntax.JPEG_BASELINE.value: backend.decode_jpeg,
        DicomTransferSyntax.JPEG_EXTENDED.value: backend.decode_jpeg,
        DicomTransferSyntax.JPEG_LOSSLESS.value: backend.decode_jpeg,
        DicomTransferSyntax.JPEG_LOSSLESS_SV1.value: backend.decode_jpeg,
        DicomTransferSyntax.JPEG_LS_LOSSLESS.value: backend.decode_jpeg_ls,
        DicomTransferSyntax.JPEG_LS_NEAR_LOSSLESS.value: (
            backend.decode_jpeg_ls
        ),
        DicomTransferSyntax.JPEG_2000_LOSSLESS.value: backend.decode_jpeg2000,
        DicomTransferSyntax.JPEG_2000.value: backend.decode_jpeg2000,
        DicomTransferSyntax.HTJ2K_LOSSLESS.value: backend.decode_jpeg2000,
        DicomTransferSyntax.HTJ2K_LOSSLESS_RPCL.value: backend.decode_jpeg2000,
        DicomTransferSyntax.HTJ2K.value: backend.decode_jpeg2000,
    }

  def decode(
      self, transfer_syntax_uid: str, request: DecodeRequest
  ) -> DecodeResult:
    """Decodes frame bytes encoded in transfer syntax.

    Args:
      transfer_syntax_uid: DICOM transfer syntax uid of encoded bytes.
      request: Frame attributes and encoded bytes.

    Returns:
      DecodeResult holding uncompressed little endian samples and the frame
      attributes, which the codec may have revised.

    Raises:
      ez_dicom_render_errors.MissingEncodedBufferError: No encoded bytes.
      ez_dicom_render_errors.UnsupportedTransferSyntaxError: Transfer syntax
        not supported.
      ez_dicom_render_errors.CodecBackendNotInitializedError: Codec backend
        required but not loaded.
      ez_dicom_render_errors.DecodeFailureError: Codec failed to decode.
    """
    if request.encoded_buffer is None:
      raise ez_dicom_render_errors.MissingEncodedBufferError()
    self._decode_count += 1
    if transfer_syntax_uid in _LITTLE_ENDIAN_TRANSFER_SYNTAXES:
      return _passthrough_result(request, request.encoded_buffer)
    if transfer_syntax_uid == DicomTransferSyntax.EXPLICIT_VR_BIG_ENDIAN.value:
      if 8 < request.bits_allocated <= 16:
        return _passthrough_result(
            request, pixel_utils.swap_16bit_bytes(request.encoded_buffer)
        )
      return _passthrough_result(request, request.encoded_buffer)
    if not can_decode_transfer_syntax(transfer_syntax_uid):
      raise ez_dicom_render_errors.UnsupportedTransferSyntaxError(
          f'Unsupported transfer syntax UID: {transfer_syntax_uid}.'
      )
    entry_point = self._codec_entry_points()[transfer_syntax_uid]
    params = codec_backend.DecoderParameters(
        convert_colorspace_to_rgb=transfer_syntax_uid
        in (
            DicomTransferSyntax.JPEG_BASELINE.value,
            DicomTransferSyntax.JPEG_EXTENDED.value,
        )
    )
    return self._decode_with_backend(
        transfer_syntax_uid, entry_point, params, request
    )

  def _decode_with_backend(
      self,
      transfer_syntax_uid: str,
      entry_point: _CodecEntryPoint,
      params: codec_backend.DecoderParameters,
      request: DecodeRequest,
  ) -> DecodeResult:
    """Runs one codec entry point within a codec context."""
    ctx = self._backend.create_context()
    try:
      ctx.columns = request.width
      ctx.rows = request.height
      ctx.bits_allocated = request.bits_allocated
      ctx.bits_stored = request.bits_stored
      ctx.samples_per_pixel = request.samples_per_pixel
      ctx.pixel_representation = request.pixel_representation
      ctx.planar_configuration = request.planar_configuration
      ctx.photometric_interpretation = request.photometric_interpretation
      ctx.encoded_buffer = request.encoded_buffer
      entry_point(ctx, params)
      if ctx.exception is not None:
        if self._logger is not None:
          self._logger.error(
              'Codec failed to decode frame.',
              {_LOG_KEYWORDS.TRANSFER_SYNTAX_UID: transfer_syntax_uid},
              ctx.exception,
          )
        raise ez_dicom_render_errors.DecodeFailureError(
            f'Failed to decode frame encoded in {transfer_syntax_uid}:'
            f' {ctx.exception}'
        ) from ctx.exception
      return DecodeResult(
          width=ctx.columns,
          height=ctx.rows,
          bits_allocated=ctx.bits_allocated,
          bits_stored=ctx.bits_stored,
          samples_per_pixel=ctx.samples_per_pixel,
          pixel_representation=ctx.pixel_representation,
          planar_configuration=ctx.planar_configuration,
          photometric_interpretation=ctx.photometric_interpretation,
          decoded_buffer=ctx.decoded_buffer,
      )
    finally:
      self._backend.release_context(ctx)

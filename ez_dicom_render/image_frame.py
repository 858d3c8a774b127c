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
"""Immutable decoded image frame and the functions which assemble it."""
import dataclasses
import io
from typing import Optional, Tuple

from ez_dicom_render import dicom_frame_decoder
from ez_dicom_render import ez_dicom_render_errors
from ez_dicom_render import frame_sample_extractor
from ez_dicom_render import pixel_utils
import numpy as np
import pydicom

_SUPPORTED_BITS_ALLOCATED = (8, 16)


@dataclasses.dataclass(frozen=True, eq=False)
class ImageFrame:
  """Decoded frame samples and the parameters needed to display them.

  Attributes:
    samples_per_pixel: Number of samples (channels) per pixel.
    photometric_interpretation: DICOM photometric interpretation, e.g.
      MONOCHROME2, as revised by the codec.
    planar_configuration: 0 = interleaved, 1 = planar.
    rows: Frame height.
    columns: Frame width.
    bits_allocated: 8 or 16.
    bits_stored: DICOM Bits Stored.
    high_bit: DICOM High Bit.
    rescale_slope: Modality LUT slope.
    rescale_intercept: Modality LUT intercept.
    pixel_representation: 0 = unsigned, 1 = signed.
    min_pixel_value: Minimum sample value in pixel_data.
    max_pixel_value: Maximum sample value in pixel_data.
    window_center: VOI LUT window center.
    window_width: VOI LUT window width; always > 0.
    pixel_data: Read-only uint8, uint16, or int16 samples.
  """

  samples_per_pixel: int
  photometric_interpretation: str
  planar_configuration: int
  rows: int
  columns: int
  bits_allocated: int
  bits_stored: int
  high_bit: int
  rescale_slope: float
  rescale_intercept: float
  pixel_representation: int
  min_pixel_value: int
  max_pixel_value: int
  window_center: float
  window_width: float
  pixel_data: np.ndarray

  def __post_init__(self):
    if self.bits_allocated not in _SUPPORTED_BITS_ALLOCATED:
      raise ez_dicom_render_errors.InvalidDicomTagError(
          f'Invalid bits allocated: {self.bits_allocated}.'
      )
    expected = self.rows * self.columns * self.samples_per_pixel
    if self.pixel_data.size != expected:
      raise ez_dicom_render_errors.PixelDataMissingError(
          f'Frame has {self.pixel_data.size} samples; expected {expected}.'
      )
    if self.window_width <= 0:
      raise ez_dicom_render_errors.InvalidDicomTagError(
          f'Invalid window width: {self.window_width}.'
      )
    self.pixel_data.flags.writeable = False

  @property
  def width(self) -> int:
    return self.columns

  @property
  def height(self) -> int:
    return self.rows


def _resolve_window(
    dataset: pydicom.Dataset,
    min_pixel_value: int,
    max_pixel_value: int,
    rescale_slope: float,
    rescale_intercept: float,
) -> Tuple[float, float]:
  """Returns (window center, window width).

  Explicit window center and width are used when present. Otherwise the
  window spans the rescaled range of the frame's samples.

  Args:
    dataset: DICOM dataset.
    min_pixel_value: Minimum sample value.
    max_pixel_value: Maximum sample value.
    rescale_slope: Modality LUT slope.
    rescale_intercept: Modality LUT intercept.

  Returns:
    Tuple of window center and window width.
  """
  centers = pixel_utils.get_number_values(dataset, 'WindowCenter', 1)
  widths = pixel_utils.get_number_values(dataset, 'WindowWidth', 1)
  if centers and widths and widths[0] > 0:
    return centers[0], widths[0]
  rescaled = (
      min_pixel_value * rescale_slope + rescale_intercept,
      max_pixel_value * rescale_slope + rescale_intercept,
  )
  voi_min = min(rescaled)
  voi_max = max(rescaled)
  window_width = voi_max - voi_min
  window_center = (voi_max + voi_min) / 2
  if window_width <= 0:
    # Flat image; any positive width renders it as a threshold at the center.
    window_width = 1.0
  return window_center, window_width


def assemble_image_frame(
    decode_result: dicom_frame_decoder.DecodeResult,
    dataset: pydicom.Dataset,
) -> ImageFrame:
  """Combines decoded samples with dataset display attributes.

  Args:
    decode_result: Decoded frame and codec revised frame attributes.
    dataset: DICOM dataset the frame was read from.

  Returns:
    ImageFrame

  Raises:
    ez_dicom_render_errors.UnsupportedBitsStoredError: Unsupported sample
      format.
    ez_dicom_render_errors.PixelDataMissingError: Decoded frame is empty or
      smaller than rows * columns * samples per pixel.
  """
  high_bit = pixel_utils.get_int_value(
      dataset, 'HighBit', decode_result.bits_stored - 1
  )
  pixel_data = pixel_utils.to_typed_pixel_data(
      decode_result.decoded_buffer,
      decode_result.pixel_representation,
      decode_result.bits_allocated,
      decode_result.bits_stored,
      high_bit,
  )
  expected_samples = (
      decode_result.width
      * decode_result.height
      * decode_result.samples_per_pixel
  )
  pixel_data = pixel_data[:expected_samples]
  min_pixel_value, max_pixel_value = (
      pixel_utils.calculate_min_max_pixel_values(pixel_data)
  )
  rescale_slope = pixel_utils.get_float_value(dataset, 'RescaleSlope', 1.0)
  rescale_intercept = pixel_utils.get_float_value(
      dataset, 'RescaleIntercept', 0.0
  )
  window_center, window_width = _resolve_window(
      dataset,
      min_pixel_value,
      max_pixel_value,
      rescale_slope,
      rescale_intercept,
  )
  return ImageFrame(
      samples_per_pixel=decode_result.samples_per_pixel,
      photometric_interpretation=decode_result.photometric_interpretation,
      planar_configuration=decode_result.planar_configuration,
      rows=decode_result.height,
      columns=decode_result.width,
      bits_allocated=decode_result.bits_allocated,
      bits_stored=decode_result.bits_stored,
      high_bit=high_bit,
      rescale_slope=rescale_slope,
      rescale_intercept=rescale_intercept,
      pixel_representation=decode_result.pixel_representation,
      min_pixel_value=min_pixel_value,
      max_pixel_value=max_pixel_value,
      window_center=window_center,
      window_width=window_width,
      pixel_data=pixel_data,
  )


def _read_dataset(dicom_bytes: bytes) -> pydicom.FileDataset:
  try:
    return pydicom.dcmread(io.BytesIO(dicom_bytes))
  except (
      pydicom.errors.InvalidDicomError,
      EOFError,
      OSError,
      ValueError,
  ) as exp:
    raise ez_dicom_render_errors.DicomParseError(
        f'Error reading DICOM instance: {exp}'
    ) from exp


def _get_transfer_syntax_uid(dataset: pydicom.Dataset) -> str:
  file_meta = getattr(dataset, 'file_meta', None)
  transfer_syntax_uid = (
      file_meta.get('TransferSyntaxUID') if file_meta is not None else None
  )
  if not transfer_syntax_uid:
    raise ez_dicom_render_errors.DicomTagNotFoundError(
        'DICOM instance is missing the transfer syntax UID.'
    )
  transfer_syntax_uid = str(transfer_syntax_uid)
  if not dicom_frame_decoder.can_decode_transfer_syntax(transfer_syntax_uid):
    raise ez_dicom_render_errors.UnsupportedTransferSyntaxError(
        f'Unsupported transfer syntax UID: {transfer_syntax_uid}.'
    )
  return transfer_syntax_uid


def _create_decode_request(
    dataset: pydicom.Dataset, encoded_buffer: Optional[bytes]
) -> dicom_frame_decoder.DecodeRequest:
  """Returns decode request for dataset's frame bytes."""
  rows = pixel_utils.get_int_value(dataset, 'Rows')
  columns = pixel_utils.get_int_value(dataset, 'Columns')
  bits_allocated = pixel_utils.get_int_value(dataset, 'BitsAllocated')
  if not rows or not columns or not bits_allocated:
    raise ez_dicom_render_errors.DicomTagNotFoundError(
        f'Missing required attributes [rows: {rows}, columns: {columns},'
        f' allocated: {bits_allocated}].'
    )
  if bits_allocated not in _SUPPORTED_BITS_ALLOCATED:
    raise ez_dicom_render_errors.InvalidDicomTagError(
        f'Invalid bits allocated: {bits_allocated}; expected 8 or 16.'
    )
  bits_stored = pixel_utils.get_int_value(
      dataset, 'BitsStored', bits_allocated
  )
  return dicom_frame_decoder.DecodeRequest(
      width=columns,
      height=rows,
      bits_allocated=bits_allocated,
      bits_stored=bits_stored,
      samples_per_pixel=pixel_utils.get_int_value(
          dataset, 'SamplesPerPixel', 1
      ),
      pixel_representation=pixel_utils.get_int_value(
          dataset, 'PixelRepresentation'
      ),
      planar_configuration=pixel_utils.get_int_value(
          dataset, 'PlanarConfiguration'
      ),
      photometric_interpretation=str(
          dataset.get('PhotometricInterpretation', '')
      ),
      encoded_buffer=encoded_buffer,
  )


def create_image_frame(
    dicom_bytes: bytes,
    frame_index: int,
    frame_decoder: dicom_frame_decoder.FrameDecoder,
) -> ImageFrame:
  """Decodes one frame of a DICOM instance.

  Args:
    dicom_bytes: DICOM Part 10 instance bytes.
    frame_index: Zero based index of frame to decode.
    frame_decoder: Decoder used to decode frame bytes.

  Returns:
    ImageFrame

  Raises:
    ez_dicom_render_errors.DicomDataRequiredError: No DICOM bytes.
    ez_dicom_render_errors.DicomParseError: Bytes are not a DICOM instance.
    ez_dicom_render_errors.DicomTagNotFoundError: Required attribute missing.
    ez_dicom_render_errors.InvalidDicomTagError: Required attribute invalid.
    ez_dicom_render_errors.UnsupportedTransferSyntaxError: Transfer syntax
      not supported.
    ez_dicom_render_errors.PixelDataMissingError: Pixel data missing.
    ez_dicom_render_errors.FrameIndexOutOfRangeError: Frame not in instance.
    ez_dicom_render_errors.DecodeFailureError: Codec failed to decode frame.
  """
  if not dicom_bytes:
    raise ez_dicom_render_errors.DicomDataRequiredError()
  dataset = _read_dataset(dicom_bytes)
  transfer_syntax_uid = _get_transfer_syntax_uid(dataset)
  request = _create_decode_request(dataset, None)
  encoded_buffer = frame_sample_extractor.get_pixel_data(dataset, frame_index)
  decode_result = frame_decoder.decode(
      transfer_syntax_uid,
      dataclasses.replace(request, encoded_buffer=encoded_buffer),
  )
  return assemble_image_frame(decode_result, dataset)

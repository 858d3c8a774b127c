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
"""Numeric utility functions for decoded pixel data."""
from typing import Any, List, Optional, Tuple, Union

from ez_dicom_render import ez_dicom_render_errors
import numpy as np
import pydicom

_Buffer = Union[bytes, bytearray, memoryview]


def to_typed_pixel_data(
    pixel_data: _Buffer,
    pixel_representation: int,
    bits_allocated: int,
    bits_stored: int,
    high_bit: int,
) -> np.ndarray:
  """Returns decoded pixel bytes reinterpreted as a typed numeric array.

  8 bit data is passed through as uint8. All other data up to 16 bits
  allocated is viewed as little endian 16 bit samples, signed if pixel
  representation is 1.

  Args:
    pixel_data: Decoded (uncompressed) pixel bytes.
    pixel_representation: 0 = unsigned, 1 = signed.
    bits_allocated: DICOM Bits Allocated.
    bits_stored: DICOM Bits Stored.
    high_bit: DICOM High Bit.

  Returns:
    Numpy array of uint8, uint16, or int16 samples.

  Raises:
    ez_dicom_render_errors.UnsupportedBitsStoredError: Bits allocated > 16.
  """
  if bits_stored == 8 and high_bit == 7 and bits_allocated == 8:
    return np.frombuffer(pixel_data, dtype=np.uint8)
  if bits_allocated <= 16:
    dtype = np.dtype('<i2') if pixel_representation == 1 else np.dtype('<u2')
    count = len(pixel_data) // dtype.itemsize
    return np.frombuffer(pixel_data, dtype=dtype, count=count)
  raise ez_dicom_render_errors.UnsupportedBitsStoredError(
      f'Unsupported pixel data value for bits stored: {bits_stored}.'
  )


def calculate_min_max_pixel_values(
    pixel_data: np.ndarray,
) -> Tuple[int, int]:
  """Returns (min, max) sample value in pixel data."""
  if pixel_data.size == 0:
    raise ez_dicom_render_errors.PixelDataMissingError(
        'Cannot compute min/max of empty pixel data.'
    )
  return int(pixel_data.min()), int(pixel_data.max())


def swap_16bit_bytes(buffer: _Buffer) -> bytes:
  """Returns buffer with the bytes of every 2 byte unit swapped.

  A trailing odd byte is returned unchanged.

  Args:
    buffer: Big endian 16 bit sample bytes.

  Returns:
    Little endian 16 bit sample bytes.
  """
  even_length = len(buffer) - len(buffer) % 2
  swapped = np.frombuffer(buffer, dtype=np.uint16, count=even_length // 2)
  return swapped.byteswap().tobytes() + bytes(buffer[even_length:])


def to_float32(pixel_data: np.ndarray) -> np.ndarray:
  return np.ascontiguousarray(pixel_data, dtype=np.float32)


def _get_value(dataset: pydicom.Dataset, keyword: str) -> Any:
  try:
    return dataset.get(keyword)
  except (ValueError, TypeError, OverflowError):
    # pydicom raises on values that cannot be converted to the tag's VR.
    return None


def get_int_value(
    dataset: pydicom.Dataset, keyword: str, default: int = 0
) -> int:
  """Returns integer tag value or default if tag is absent, empty, or zero."""
  value = _get_value(dataset, keyword)
  if isinstance(value, pydicom.multival.MultiValue):
    value = value[0] if value else None
  try:
    value = int(value) if value is not None and value != '' else 0
  except (ValueError, TypeError):
    return default
  return value if value else default


def get_float_value(
    dataset: pydicom.Dataset, keyword: str, default: float = 0.0
) -> float:
  """Returns float tag value or default if tag is absent, empty, or zero."""
  values = get_number_values(dataset, keyword, 1)
  if not values or not values[0]:
    return default
  return values[0]


def get_number_values(
    dataset: pydicom.Dataset, keyword: str, minimum_length: int = 0
) -> Optional[List[float]]:
  """Returns numeric values of a (multi-valued) decimal string tag.

  Args:
    dataset: Dataset to read.
    keyword: DICOM keyword, e.g. 'WindowCenter'.
    minimum_length: Minimum number of values required.

  Returns:
    List of values or None if tag is absent, empty, cannot be parsed, or has
    fewer than minimum_length values.
  """
  if dataset is None:
    raise ez_dicom_render_errors.InputError('Dataset is required.')
  value = _get_value(dataset, keyword)
  if value is None or value == '':
    return None
  if isinstance(value, (pydicom.multival.MultiValue, list, tuple)):
    values = list(value)
  else:
    values = [value]
  if minimum_length and len(values) < minimum_length:
    return None
  try:
    return [float(val) for val in values]
  except (ValueError, TypeError):
    return None

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
"""Tests for pixel utils."""
from absl.testing import absltest
from absl.testing import parameterized
from ez_dicom_render import ez_dicom_render_errors
from ez_dicom_render import pixel_utils
import numpy as np
import pydicom


def _dataset(**kwargs) -> pydicom.Dataset:
  ds = pydicom.Dataset()
  for key, value in kwargs.items():
    setattr(ds, key, value)
  return ds


class PixelUtilsTest(parameterized.TestCase):

  @parameterized.named_parameters([
      dict(
          testcase_name='uint8',
          values=[0, 1, 127, 255],
          dtype=np.uint8,
          pixel_representation=0,
          bits_allocated=8,
          bits_stored=8,
          high_bit=7,
      ),
      dict(
          testcase_name='uint16',
          values=[0, 1, 4095, 65535],
          dtype=np.uint16,
          pixel_representation=0,
          bits_allocated=16,
          bits_stored=12,
          high_bit=11,
      ),
      dict(
          testcase_name='int16',
          values=[-32768, -1, 0, 32767],
          dtype=np.int16,
          pixel_representation=1,
          bits_allocated=16,
          bits_stored=16,
          high_bit=15,
      ),
  ])
  def test_to_typed_pixel_data_reproduces_values(
      self,
      values,
      dtype,
      pixel_representation,
      bits_allocated,
      bits_stored,
      high_bit,
  ):
    raw = np.asarray(values, dtype=np.dtype(dtype).newbyteorder('<')).tobytes()
    typed = pixel_utils.to_typed_pixel_data(
        raw, pixel_representation, bits_allocated, bits_stored, high_bit
    )
    self.assertEqual(typed.dtype.kind, np.dtype(dtype).kind)
    self.assertEqual(typed.dtype.itemsize, np.dtype(dtype).itemsize)
    self.assertEqual(typed.tolist(), values)
    self.assertEqual(typed.tobytes(), raw)

  def test_to_typed_pixel_data_8bit_with_unusual_high_bit_is_16bit(self):
    typed = pixel_utils.to_typed_pixel_data(b'\x01\x02', 0, 8, 7, 6)
    self.assertEqual(typed.tolist(), [0x0201])

  def test_to_typed_pixel_data_unsupported_bits_raises(self):
    with self.assertRaises(ez_dicom_render_errors.UnsupportedBitsStoredError):
      pixel_utils.to_typed_pixel_data(b'\0' * 8, 0, 32, 32, 31)

  @parameterized.parameters([
      b'',
      b'\x01\x02',
      b'\x01\x02\x03\x04\xff\x00',
      bytes(range(256)),
  ])
  def test_swap_16bit_bytes_is_involution(self, buffer):
    swapped = pixel_utils.swap_16bit_bytes(buffer)
    self.assertLen(swapped, len(buffer))
    self.assertEqual(pixel_utils.swap_16bit_bytes(swapped), buffer)

  def test_swap_16bit_bytes(self):
    self.assertEqual(
        pixel_utils.swap_16bit_bytes(b'\x01\x02\x03\x04'), b'\x02\x01\x04\x03'
    )

  def test_swap_16bit_bytes_odd_trailing_byte_unchanged(self):
    self.assertEqual(
        pixel_utils.swap_16bit_bytes(b'\x01\x02\x03'), b'\x02\x01\x03'
    )

  @parameterized.parameters([
      (np.asarray([5, 3, 9, 1], dtype=np.uint8), 1, 9),
      (np.asarray([7], dtype=np.uint16), 7, 7),
      (np.asarray([-5, 300, 0], dtype=np.int16), -5, 300),
  ])
  def test_calculate_min_max_pixel_values(self, data, expected_min, max_val):
    self.assertEqual(
        pixel_utils.calculate_min_max_pixel_values(data),
        (expected_min, max_val),
    )

  def test_calculate_min_max_pixel_values_empty_raises(self):
    with self.assertRaises(ez_dicom_render_errors.PixelDataMissingError):
      pixel_utils.calculate_min_max_pixel_values(np.zeros(0, dtype=np.uint8))

  def test_to_float32(self):
    result = pixel_utils.to_float32(np.asarray([-2, 3], dtype=np.int16))
    self.assertEqual(result.dtype, np.float32)
    self.assertEqual(result.tolist(), [-2.0, 3.0])

  def test_get_number_values_multi_value(self):
    ds = _dataset(WindowCenter=['40', '400'])
    self.assertEqual(
        pixel_utils.get_number_values(ds, 'WindowCenter', 1), [40.0, 400.0]
    )

  def test_get_number_values_single_value(self):
    ds = _dataset(WindowWidth='350.5')
    self.assertEqual(
        pixel_utils.get_number_values(ds, 'WindowWidth', 1), [350.5]
    )

  def test_get_number_values_missing(self):
    self.assertIsNone(
        pixel_utils.get_number_values(_dataset(), 'WindowWidth', 1)
    )

  def test_get_number_values_shorter_than_minimum(self):
    ds = _dataset(WindowCenter='40')
    self.assertIsNone(pixel_utils.get_number_values(ds, 'WindowCenter', 2))

  def test_get_number_values_no_dataset_raises(self):
    with self.assertRaises(ez_dicom_render_errors.InputError):
      pixel_utils.get_number_values(None, 'WindowCenter', 1)

  @parameterized.parameters([
      ('RescaleSlope', '2.5', 1.0, 2.5),
      ('RescaleSlope', '0', 1.0, 1.0),
      ('RescaleIntercept', '-1024', 0.0, -1024.0),
      ('RescaleIntercept', None, 0.0, 0.0),
  ])
  def test_get_float_value(self, keyword, value, default, expected):
    ds = _dataset() if value is None else _dataset(**{keyword: value})
    self.assertEqual(
        pixel_utils.get_float_value(ds, keyword, default), expected
    )

  @parameterized.parameters([
      ('Rows', 512, 0, 512),
      ('BitsStored', 0, 16, 16),
      ('PixelRepresentation', None, 0, 0),
      ('SamplesPerPixel', None, 1, 1),
  ])
  def test_get_int_value(self, keyword, value, default, expected):
    ds = _dataset() if value is None else _dataset(**{keyword: value})
    self.assertEqual(pixel_utils.get_int_value(ds, keyword, default), expected)


if __name__ == '__main__':
  absltest.main()

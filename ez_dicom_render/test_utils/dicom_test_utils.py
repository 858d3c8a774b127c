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
"""Builders for in memory DICOM test instances."""
import io
from typing import Optional, Sequence, Union

import numpy as np
import pydicom

EXPLICIT_VR_LITTLE_ENDIAN = '1.2.840.10008.1.2.1'
IMPLICIT_VR_LITTLE_ENDIAN = '1.2.840.10008.1.2'
DEFLATED_EXPLICIT_VR_LITTLE_ENDIAN = '1.2.840.10008.1.2.1.99'
EXPLICIT_VR_BIG_ENDIAN = '1.2.840.10008.1.2.2'
RLE_LOSSLESS = '1.2.840.10008.1.2.5'
JPEG_BASELINE = '1.2.840.10008.1.2.4.50'

_SECONDARY_CAPTURE_SOP_CLASS_UID = '1.2.840.10008.5.1.4.1.1.7'
TEST_INSTANCE_UID = '1.22.333.301'

_Number = Union[int, float]


def create_test_dataset(
    pixel_data: bytes,
    rows: int,
    columns: int,
    bits_allocated: int = 8,
    bits_stored: Optional[int] = None,
    high_bit: Optional[int] = None,
    samples_per_pixel: int = 1,
    pixel_representation: int = 0,
    photometric_interpretation: str = 'MONOCHROME2',
    planar_configuration: Optional[int] = None,
    number_of_frames: Optional[int] = None,
    window_center: Optional[Union[_Number, Sequence[_Number]]] = None,
    window_width: Optional[Union[_Number, Sequence[_Number]]] = None,
    rescale_slope: Optional[_Number] = None,
    rescale_intercept: Optional[_Number] = None,
    transfer_syntax_uid: str = EXPLICIT_VR_LITTLE_ENDIAN,
) -> pydicom.FileDataset:
  """Creates pydicom instance for testing.

  Args:
    pixel_data: Value of PixelData; native bytes or encapsulated bytes.
    rows: Rows.
    columns: Columns.
    bits_allocated: BitsAllocated.
    bits_stored: BitsStored; defaults to bits_allocated.
    high_bit: HighBit; defaults to bits_stored - 1.
    samples_per_pixel: SamplesPerPixel.
    pixel_representation: PixelRepresentation.
    photometric_interpretation: PhotometricInterpretation.
    planar_configuration: PlanarConfiguration; omitted if None.
    number_of_frames: NumberOfFrames; omitted if None.
    window_center: WindowCenter; omitted if None.
    window_width: WindowWidth; omitted if None.
    rescale_slope: RescaleSlope; omitted if None.
    rescale_intercept: RescaleIntercept; omitted if None.
    transfer_syntax_uid: Transfer syntax the instance is encoded in.

  Returns:
    pydicom.FileDataset
  """
  bits_stored = bits_allocated if bits_stored is None else bits_stored
  high_bit = bits_stored - 1 if high_bit is None else high_bit
  file_meta = pydicom.dataset.FileMetaDataset()
  file_meta.TransferSyntaxUID = transfer_syntax_uid
  file_meta.MediaStorageSOPClassUID = _SECONDARY_CAPTURE_SOP_CLASS_UID
  file_meta.MediaStorageSOPInstanceUID = TEST_INSTANCE_UID
  file_meta.ImplementationClassUID = '1.2.3'
  syntax = pydicom.uid.UID(transfer_syntax_uid)
  ds = pydicom.FileDataset(
      '',
      {},
      file_meta=file_meta,
      preamble=b'\0' * 128,
      is_implicit_VR=syntax.is_implicit_VR,
      is_little_endian=syntax.is_little_endian,
  )
  ds.SOPClassUID = _SECONDARY_CAPTURE_SOP_CLASS_UID
  ds.SOPInstanceUID = TEST_INSTANCE_UID
  ds.Rows = rows
  ds.Columns = columns
  ds.BitsAllocated = bits_allocated
  ds.BitsStored = bits_stored
  ds.HighBit = high_bit
  ds.SamplesPerPixel = samples_per_pixel
  ds.PixelRepresentation = pixel_representation
  ds.PhotometricInterpretation = photometric_interpretation
  if planar_configuration is not None:
    ds.PlanarConfiguration = planar_configuration
  if number_of_frames is not None:
    ds.NumberOfFrames = number_of_frames
  if window_center is not None:
    ds.WindowCenter = window_center
  if window_width is not None:
    ds.WindowWidth = window_width
  if rescale_slope is not None:
    ds.RescaleSlope = rescale_slope
  if rescale_intercept is not None:
    ds.RescaleIntercept = rescale_intercept
  encapsulated = pydicom.uid.UID(transfer_syntax_uid).is_encapsulated
  vr = 'OB' if encapsulated or bits_allocated == 8 else 'OW'
  ds.add_new(0x7FE00010, vr, pixel_data)
  if encapsulated:
    ds['PixelData'].is_undefined_length = True
  return ds


def dataset_to_bytes(ds: pydicom.Dataset) -> bytes:
  with io.BytesIO() as buffer:
    ds.save_as(buffer, enforce_file_format=True)
    return buffer.getvalue()


def create_test_dicom_bytes(
    pixel_data: bytes, rows: int, columns: int, **kwargs
) -> bytes:
  """Returns a DICOM Part 10 byte stream; kwargs as create_test_dataset."""
  return dataset_to_bytes(
      create_test_dataset(pixel_data, rows, columns, **kwargs)
  )


def read_test_dataset(dicom_bytes: bytes) -> pydicom.FileDataset:
  return pydicom.dcmread(io.BytesIO(dicom_bytes))


def encapsulate_fragments(
    fragments: Sequence[bytes], basic_offset_table: Sequence[int] = ()
) -> bytes:
  """Returns encapsulated pixel data with the given fragments.

  Args:
    fragments: Fragment bytes; each must have even length.
    basic_offset_table: Offsets to store in the basic offset table item.

  Returns:
    Encapsulated pixel data bytes (without sequence delimiter).
  """
  table = np.asarray(basic_offset_table, dtype='<u4').tobytes()
  encoded = [
      b'\xfe\xff\x00\xe0',
      np.asarray([len(table)], dtype='<u4').tobytes(),
      table,
  ]
  for fragment in fragments:
    encoded.append(pydicom.encaps.itemize_fragment(fragment))
  return b''.join(encoded)


def jpeg_like_frame(payload: bytes) -> bytes:
  """Returns payload wrapped in JPEG start and end of image markers."""
  return b'\xff\xd8' + payload + b'\xff\xd9'


def rle_encode_frame(
    frame: np.ndarray, samples_per_pixel: int, bytes_per_sample: int
) -> bytes:
  """Returns DICOM RLE encoding of a native little endian frame array.

  Segments are stored as PackBits literal runs of <= 128 bytes.

  Args:
    frame: Frame samples (interleaved) as uint8 or little endian uint16.
    samples_per_pixel: Samples per pixel.
    bytes_per_sample: 1 or 2.

  Returns:
    Encoded RLE frame.
  """
  raw = np.frombuffer(frame.tobytes(), dtype=np.uint8).reshape(
      -1, samples_per_pixel, bytes_per_sample
  )
  segments = []
  for sample in range(samples_per_pixel):
    # Segments are ordered most significant byte first.
    for byte_index in reversed(range(bytes_per_sample)):
      plane = raw[:, sample, byte_index].tobytes()
      encoded = bytearray()
      for start in range(0, len(plane), 128):
        chunk = plane[start : start + 128]
        encoded.append(len(chunk) - 1)
        encoded.extend(chunk)
      segments.append(bytes(encoded))
  offsets = []
  position = 64
  for segment in segments:
    offsets.append(position)
    position += len(segment)
  header = np.zeros(16, dtype='<u4')
  header[0] = len(segments)
  header[1 : 1 + len(offsets)] = offsets
  return header.tobytes() + b''.join(segments)

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
"""Returns the raw (possibly compressed) bytes of one frame of pixel data."""
import io
from typing import List, Sequence, Tuple

from ez_dicom_render import ez_dicom_render_errors
from ez_dicom_render import pixel_utils
import pydicom

_PIXEL_DATA_KEYWORDS = ('PixelData', 'FloatPixelData')

# JPEG EOI and JPEG 2000 EOC share the same marker.
_END_OF_IMAGE_MARKER = b'\xff\xd9'

# (offset of fragment item tag relative to the first fragment, fragment bytes)
_Fragment = Tuple[int, bytes]


def _get_pixel_data_element(
    dataset: pydicom.Dataset,
) -> pydicom.DataElement:
  for keyword in _PIXEL_DATA_KEYWORDS:
    if keyword in dataset:
      element = dataset[keyword]
      if element.value:
        return element
  raise ez_dicom_render_errors.PixelDataMissingError(
      'Pixel data element was not found.'
  )


def _is_encapsulated(
    dataset: pydicom.Dataset, element: pydicom.DataElement
) -> bool:
  if element.is_undefined_length:
    return True
  try:
    return pydicom.uid.UID(
        dataset.file_meta.TransferSyntaxUID
    ).is_encapsulated
  except AttributeError:
    return False


def _parse_fragments(buffer: bytes) -> Tuple[List[int], List[_Fragment]]:
  """Returns basic offset table and list of fragments in encapsulated data."""
  try:
    with io.BytesIO(buffer) as fp:
      basic_offset_table = pydicom.encaps.parse_basic_offsets(fp)
      first_fragment_offset = fp.tell()
      _, fragment_offsets = pydicom.encaps.parse_fragments(fp)
      fragments = list(pydicom.encaps.generate_fragments(fp))
  except ValueError as exp:
    raise ez_dicom_render_errors.PixelDataMissingError(
        f'Invalid encapsulated pixel data: {exp}'
    ) from exp
  return basic_offset_table, [
      (offset - first_fragment_offset, fragment)
      for offset, fragment in zip(fragment_offsets, fragments)
  ]


def _is_end_of_image_fragment(fragment: bytes) -> bool:
  # Odd length fragments are padded with a trailing null byte.
  return (
      fragment[-2:] == _END_OF_IMAGE_MARKER
      or fragment[-3:-1] == _END_OF_IMAGE_MARKER
  )


def _create_basic_offset_table(fragments: Sequence[_Fragment]) -> List[int]:
  """Builds basic offset table by scanning fragments for end of image marker.

  A frame ends at the first fragment which ends with an end of image marker;
  the next frame begins at the following fragment.

  Args:
    fragments: Encapsulated pixel data fragments.

  Returns:
    Offset of the first fragment of each frame.
  """
  offset_table = [0]
  for index, (_, fragment) in enumerate(fragments[:-1]):
    if _is_end_of_image_fragment(fragment):
      offset_table.append(fragments[index + 1][0])
  return offset_table


def _read_frame_from_offset_table(
    fragments: Sequence[_Fragment],
    offset_table: Sequence[int],
    frame_index: int,
) -> bytes:
  """Returns concatenated fragments which start within the frame's range."""
  if frame_index >= len(offset_table):
    raise ez_dicom_render_errors.FrameIndexOutOfRangeError(
        f'Frame index {frame_index} exceeds number of frames'
        f' {len(offset_table)}.'
    )
  start = offset_table[frame_index]
  end = (
      offset_table[frame_index + 1]
      if frame_index + 1 < len(offset_table)
      else None
  )
  frame = [
      fragment
      for offset, fragment in fragments
      if offset >= start and (end is None or offset < end)
  ]
  if not frame:
    raise ez_dicom_render_errors.FrameIndexOutOfRangeError(
        f'Frame {frame_index} offset {start} exceeds size of pixel data.'
    )
  return b''.join(frame)


def get_encapsulated_image_frame(
    dataset: pydicom.Dataset, frame_index: int = 0
) -> bytes:
  """Returns compressed bytes of one frame of encapsulated pixel data.

  The basic offset table is used if present. Producers often leave it empty;
  in that case fragments map 1:1 to frames when the fragment count equals the
  number of frames, otherwise frame boundaries are found by scanning for end
  of image markers.

  Args:
    dataset: Dataset with encapsulated pixel data.
    frame_index: Zero based frame index.

  Returns:
    Frame bytes.

  Raises:
    ez_dicom_render_errors.FrameIndexOutOfRangeError: Frame not in data.
    ez_dicom_render_errors.PixelDataMissingError: Pixel data missing or
      invalid.
  """
  element = _get_pixel_data_element(dataset)
  basic_offset_table, fragments = _parse_fragments(element.value)
  if not fragments:
    raise ez_dicom_render_errors.PixelDataMissingError(
        'Encapsulated pixel data contains no fragments.'
    )
  if basic_offset_table:
    return _read_frame_from_offset_table(
        fragments, basic_offset_table, frame_index
    )
  number_of_frames = pixel_utils.get_int_value(dataset, 'NumberOfFrames', 1)
  if number_of_frames != len(fragments):
    return _read_frame_from_offset_table(
        fragments, _create_basic_offset_table(fragments), frame_index
    )
  if frame_index >= len(fragments):
    raise ez_dicom_render_errors.FrameIndexOutOfRangeError(
        f'Frame index {frame_index} exceeds number of frames'
        f' {number_of_frames}.'
    )
  return fragments[frame_index][1]


def get_uncompressed_image_frame(
    dataset: pydicom.Dataset, frame_index: int = 0
) -> bytes:
  """Returns bytes of one frame of native (uncompressed) pixel data.

  Args:
    dataset: Dataset with native pixel data.
    frame_index: Zero based frame index.

  Returns:
    Frame bytes.

  Raises:
    ez_dicom_render_errors.DicomTagNotFoundError: Required attribute missing.
    ez_dicom_render_errors.FrameIndexOutOfRangeError: Frame not in data.
    ez_dicom_render_errors.UnsupportedPixelFormatError: Bits allocated not 8
      or 16.
  """
  element = _get_pixel_data_element(dataset)
  bits_allocated = pixel_utils.get_int_value(dataset, 'BitsAllocated')
  rows = pixel_utils.get_int_value(dataset, 'Rows')
  columns = pixel_utils.get_int_value(dataset, 'Columns')
  samples_per_pixel = pixel_utils.get_int_value(dataset, 'SamplesPerPixel')
  if not bits_allocated or not rows or not columns or not samples_per_pixel:
    raise ez_dicom_render_errors.DicomTagNotFoundError(
        f'Missing required attributes [allocated: {bits_allocated}, rows:'
        f' {rows}, columns: {columns}, samples: {samples_per_pixel}].'
    )
  if bits_allocated not in (8, 16):
    raise ez_dicom_render_errors.UnsupportedPixelFormatError(
        f'Unsupported pixel format [Bits allocated: {bits_allocated}].'
    )
  pixel_data = element.value
  frame_length = rows * columns * samples_per_pixel * (bits_allocated // 8)
  frame_offset = frame_index * frame_length
  if (
      frame_offset >= len(pixel_data)
      or frame_offset + frame_length > len(pixel_data)
  ):
    raise ez_dicom_render_errors.FrameIndexOutOfRangeError(
        f'Frame {frame_index} exceeds size of pixel data.'
    )
  return bytes(pixel_data[frame_offset : frame_offset + frame_length])


def get_pixel_data(dataset: pydicom.Dataset, frame_index: int = 0) -> bytes:
  """Returns the raw bytes of one frame of the dataset's pixel data."""
  element = _get_pixel_data_element(dataset)
  if _is_encapsulated(dataset, element):
    return get_encapsulated_image_frame(dataset, frame_index)
  return get_uncompressed_image_frame(dataset, frame_index)

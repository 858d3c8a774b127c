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
"""Error classes for EZ DICOM Render."""


class EZDicomRenderError(Exception):
  pass


# Missing GPU device, missing buffer, or codec backend not ready.
class ConfigurationError(EZDicomRenderError):
  pass


class GpuDeviceRequiredError(ConfigurationError):

  def __init__(self, msg: str = 'GPU device is required.'):
    super().__init__(msg)


class CodecBackendNotInitializedError(ConfigurationError):

  def __init__(self, msg: str = 'Frame decoder is not initialized.'):
    super().__init__(msg)


class CodecBackendLoadError(ConfigurationError):
  pass


class InvalidCacheCapacityError(ConfigurationError):

  def __init__(self, msg: str = 'Cache capacity must be >= 1.'):
    super().__init__(msg)


# Missing or malformed DICOM data.
class InputError(EZDicomRenderError):
  pass


class DicomDataRequiredError(InputError):

  def __init__(self, msg: str = 'DICOM data buffer is required.'):
    super().__init__(msg)


class DicomParseError(InputError):
  pass


class DicomTagNotFoundError(InputError):
  pass


class InvalidDicomTagError(InputError):
  pass


class PixelDataMissingError(InputError):
  pass


class FrameIndexOutOfRangeError(InputError):
  pass


class MissingEncodedBufferError(InputError):

  def __init__(self, msg: str = 'No encoded buffer provided.'):
    super().__init__(msg)


class UnsupportedFormatError(EZDicomRenderError):
  pass


class UnsupportedTransferSyntaxError(UnsupportedFormatError):
  pass


class UnsupportedPhotometricInterpretationError(UnsupportedFormatError):
  pass


class UnsupportedBitsStoredError(UnsupportedFormatError):
  pass


class UnsupportedPixelFormatError(UnsupportedFormatError):
  pass


class DecodeFailureError(EZDicomRenderError):
  pass


class PipelineError(EZDicomRenderError):
  pass


class PipelineNotInitializedError(PipelineError):

  def __init__(self, msg: str = 'Pipeline is not initialized.'):
    super().__init__(msg)

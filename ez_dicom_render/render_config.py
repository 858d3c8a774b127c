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
"""Configuration settings for the DICOM frame renderer."""
from __future__ import annotations

import dataclasses
from typing import Any, Mapping, Optional

from ez_dicom_render import ez_dicom_render_errors

# Number of decoded image frames held in memory.
DEFAULT_FRAME_CACHE_CAPACITY = 3

# Number of compiled render pipelines held per renderer.
DEFAULT_PIPELINE_CACHE_CAPACITY = 5

DEFAULT_CODEC_MODULE_NAME = 'imagecodecs'

_CODEC_MODULE_NAME_OPTION = 'codec_module_name'


@dataclasses.dataclass(frozen=True)
class RendererConfig:
  """Cache sizes and codec backend used by a DicomRenderer."""

  frame_cache_capacity: int = DEFAULT_FRAME_CACHE_CAPACITY
  pipeline_cache_capacity: int = DEFAULT_PIPELINE_CACHE_CAPACITY
  codec_module_name: str = DEFAULT_CODEC_MODULE_NAME

  def __post_init__(self):
    if self.frame_cache_capacity < 1 or self.pipeline_cache_capacity < 1:
      raise ez_dicom_render_errors.InvalidCacheCapacityError(
          'Cache capacity must be >= 1; frame cache capacity:'
          f' {self.frame_cache_capacity}, pipeline cache capacity:'
          f' {self.pipeline_cache_capacity}.'
      )

  def with_options(
      self, options: Optional[Mapping[str, Any]] = None
  ) -> RendererConfig:
    """Returns config updated with initialize() options.

    Args:
      options: Options passed to DicomRenderer.initialize. Unrecognized keys
        are ignored.

    Returns:
      RendererConfig
    """
    if not options or _CODEC_MODULE_NAME_OPTION not in options:
      return self
    return dataclasses.replace(
        self, codec_module_name=str(options[_CODEC_MODULE_NAME_OPTION])
    )

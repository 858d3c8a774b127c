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
"""Bounded least recently used caches for image frames and pipelines."""
import dataclasses
from typing import Any, Callable, Generic, Hashable, Optional, TypeVar

import cachetools
from ez_dicom_render import ez_dicom_render_errors

_V = TypeVar('_V')

# Called with (key, value) when a value leaves the cache.
_RemovalCallback = Callable[[Hashable, Any], None]


@dataclasses.dataclass
class CacheStats:
  """Cache hit, miss, and eviction counts."""

  hit_count: int = 0
  miss_count: int = 0
  eviction_count: int = 0


class _LRUCache(cachetools.LRUCache):
  """LRUCache which reports evicted items."""

  def __init__(self, maxsize: int, on_evict: Callable[[Hashable, Any], None]):
    super().__init__(maxsize=maxsize)
    self._on_evict = on_evict

  def popitem(self):
    key, value = super().popitem()
    self._on_evict(key, value)
    return key, value


class BoundedCache(Generic[_V]):
  """Least recently used cache holding at most capacity values.

  get promotes the key to most recently used. set replaces and promotes an
  existing key or, when the cache is full, evicts the least recently used key
  before inserting.
  """

  def __init__(
      self, capacity: int, on_remove: Optional[_RemovalCallback] = None
  ):
    if capacity < 1:
      raise ez_dicom_render_errors.InvalidCacheCapacityError(
          f'Cache capacity must be >= 1; capacity: {capacity}.'
      )
    self._capacity = capacity
    self._on_remove = on_remove
    self._cache_stats = CacheStats()
    self._cache = _LRUCache(capacity, self._evicted)

  def _evicted(self, key: Hashable, value: _V) -> None:
    self._cache_stats.eviction_count += 1
    if self._on_remove is not None:
      self._on_remove(key, value)

  @property
  def capacity(self) -> int:
    return self._capacity

  @property
  def cache_stats(self) -> CacheStats:
    return self._cache_stats

  def reset_cache_stats(self) -> None:
    self._cache_stats = CacheStats()

  def get(self, key: Hashable) -> Optional[_V]:
    """Returns cached value and marks key most recently used or None."""
    value = self._cache.get(key)
    if value is None:
      self._cache_stats.miss_count += 1
    else:
      self._cache_stats.hit_count += 1
    return value

  def set(self, key: Hashable, value: _V) -> None:
    previous = self._cache.get(key)
    self._cache[key] = value
    if (
        previous is not None
        and previous is not value
        and self._on_remove is not None
    ):
      self._on_remove(key, previous)

  def clear(self) -> None:
    for key, value in list(self._cache.items()):
      del self._cache[key]
      if self._on_remove is not None:
        self._on_remove(key, value)

  def __contains__(self, key: Hashable) -> bool:
    return key in self._cache

  def __len__(self) -> int:
    return len(self._cache)


class FrameCache(BoundedCache):
  """Caches decoded image frames by caller supplied key."""


def _release_pipeline(key: Hashable, pipeline: Any) -> None:
  del key
  pipeline.release()


class PipelineCache(BoundedCache):
  """Caches initialized render pipelines by photometric interpretation.

  Pipelines which leave the cache release their GPU resources.
  """

  def __init__(self, capacity: int):
    super().__init__(capacity, _release_pipeline)

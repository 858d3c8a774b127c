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
"""In process stand-in for a wgpu GPUDevice.

Records the objects created through the device and, when a command buffer is
submitted, executes the grayscale compute shader's arithmetic with numpy.
"""
import dataclasses
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from ez_dicom_render import shaders
import numpy as np


class MockGpuBuffer:
  """Host memory backed GPU buffer."""

  def __init__(self, label: str, size: int, usage: int):
    self.label = label
    self.size = size
    self.usage = usage
    self.data = bytearray(size)
    self.destroyed = False
    self.mapped = False

  def _check_not_destroyed(self) -> None:
    if self.destroyed:
      raise RuntimeError(f'Buffer {self.label} has been destroyed.')

  def map_sync(self, mode: int) -> None:
    del mode
    self._check_not_destroyed()
    self.mapped = True

  def read_mapped(self) -> memoryview:
    if not self.mapped:
      raise RuntimeError(f'Buffer {self.label} is not mapped.')
    return memoryview(bytes(self.data))

  def unmap(self) -> None:
    self.mapped = False

  def destroy(self) -> None:
    self.destroyed = True


@dataclasses.dataclass
class MockGpuObject:
  """Shader module, layout, pipeline, or bind group."""

  kind: str
  descriptor: Mapping[str, Any]


def run_grayscale_kernel(
    input_data: bytes, workgroups: Tuple[int, int, int]
) -> bytes:
  """Returns RGBA output the grayscale shader writes for input buffer bytes."""
  columns, rows = (int(val) for val in np.frombuffer(input_data, '<u4', 2))
  header = np.frombuffer(input_data, '<f4', shaders.GRAYSCALE_HEADER_SIZE // 4)
  slope, intercept, center, width, _, invert = header[2:]
  samples = np.frombuffer(
      input_data,
      '<f4',
      count=rows * columns,
      offset=shaders.GRAYSCALE_HEADER_SIZE,
  ).reshape(rows, columns)
  value = samples * slope + intercept
  if width <= 0:
    level = np.where(value > center, np.float32(255), np.float32(0))
  else:
    level = np.clip(((value - center) / width + 0.5) * 255, 0, 255)
  if invert != 0:
    level = 255 - level
  gray = np.floor(level + 0.5).astype(np.uint8)
  rgba = np.zeros((rows, columns, 4), dtype=np.uint8)
  covered_rows = min(rows, workgroups[1] * shaders.WORKGROUP_SIZE)
  covered_columns = min(columns, workgroups[0] * shaders.WORKGROUP_SIZE)
  covered = (slice(0, covered_rows), slice(0, covered_columns))
  for channel in range(3):
    rgba[covered + (channel,)] = gray[covered]
  rgba[covered + (3,)] = 255
  return rgba.tobytes()


class MockComputePass:

  def __init__(self):
    self.pipeline = None
    self.bind_groups = {}
    self.workgroups: Optional[Tuple[int, int, int]] = None
    self.ended = False

  def set_pipeline(self, pipeline: MockGpuObject) -> None:
    self.pipeline = pipeline

  def set_bind_group(self, index: int, bind_group: MockGpuObject) -> None:
    self.bind_groups[index] = bind_group

  def dispatch_workgroups(self, x: int, y: int = 1, z: int = 1) -> None:
    self.workgroups = (x, y, z)

  def end(self) -> None:
    self.ended = True

  def execute(self) -> None:
    if not self.ended or self.workgroups is None:
      raise RuntimeError('Compute pass was not dispatched and ended.')
    entries = {
        entry['binding']: entry['resource']['buffer']
        for entry in self.bind_groups[0].descriptor['entries']
    }
    output = run_grayscale_kernel(bytes(entries[0].data), self.workgroups)
    entries[1].data[: len(output)] = output


class MockCommandEncoder:

  def __init__(self):
    self.commands = []

  def begin_compute_pass(self) -> MockComputePass:
    compute_pass = MockComputePass()
    self.commands.append(compute_pass.execute)
    return compute_pass

  def copy_buffer_to_buffer(
      self,
      source: MockGpuBuffer,
      source_offset: int,
      destination: MockGpuBuffer,
      destination_offset: int,
      size: int,
  ) -> None:
    def _copy():
      destination.data[destination_offset : destination_offset + size] = (
          source.data[source_offset : source_offset + size]
      )

    self.commands.append(_copy)

  def finish(self) -> List[Any]:
    return list(self.commands)


class MockGpuQueue:

  def __init__(self, device: 'MockGpuDevice'):
    self._device = device

  def write_buffer(
      self, buffer: MockGpuBuffer, buffer_offset: int, data: bytes
  ) -> None:
    data = bytes(data)
    buffer.data[buffer_offset : buffer_offset + len(data)] = data

  def submit(self, command_buffers: Sequence[List[Any]]) -> None:
    if self._device.submit_error is not None:
      raise self._device.submit_error
    self._device.submit_count += 1
    for command_buffer in command_buffers:
      for command in command_buffer:
        command()


class MockGpuDevice:
  """Minimal wgpu GPUDevice double used by render pipeline tests."""

  def __init__(self, submit_error: Optional[Exception] = None):
    self.queue = MockGpuQueue(self)
    self.buffers: List[MockGpuBuffer] = []
    self.objects: List[MockGpuObject] = []
    self.submit_count = 0
    self.submit_error = submit_error

  def _create(self, kind: str, **descriptor) -> MockGpuObject:
    obj = MockGpuObject(kind, descriptor)
    self.objects.append(obj)
    return obj

  def create_shader_module(self, **descriptor) -> MockGpuObject:
    return self._create('shader_module', **descriptor)

  def create_bind_group_layout(self, **descriptor) -> MockGpuObject:
    return self._create('bind_group_layout', **descriptor)

  def create_pipeline_layout(self, **descriptor) -> MockGpuObject:
    return self._create('pipeline_layout', **descriptor)

  def create_compute_pipeline(self, **descriptor) -> MockGpuObject:
    return self._create('compute_pipeline', **descriptor)

  def create_bind_group(self, **descriptor) -> MockGpuObject:
    return self._create('bind_group', **descriptor)

  def create_buffer(
      self, label: str = '', size: int = 0, usage: int = 0
  ) -> MockGpuBuffer:
    buffer = MockGpuBuffer(label, size, usage)
    self.buffers.append(buffer)
    return buffer

  def create_command_encoder(self) -> MockCommandEncoder:
    return MockCommandEncoder()

  def count(self, kind: str) -> int:
    return sum(1 for obj in self.objects if obj.kind == kind)

  @property
  def live_buffers(self) -> List[MockGpuBuffer]:
    return [buffer for buffer in self.buffers if not buffer.destroyed]

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
"""WGSL compute shaders used by the render pipelines."""
import re

# Workgroup edge length; dispatch is ceil(columns / 16) x ceil(rows / 16).
WORKGROUP_SIZE = 16

# Byte offset of the sample array in the grayscale shader's input buffer.
GRAYSCALE_HEADER_SIZE = 32

# Input buffer layout (little endian):
#   0: u32 columns, u32 rows
#   8: f32 rescale slope, f32 rescale intercept
#  16: f32 window center - 0.5, f32 window width - 1
#  24: f32 reserved, f32 invert (1.0 for MONOCHROME1)
#  32: f32 samples, rows * columns
# Output buffer holds one RGBA8 pixel packed in a u32 per sample.
GRAYSCALE_SHADER = """
struct ImageFrame {
  size: vec2<u32>,
  scale: vec2<f32>,
  window: vec2<f32>,
  flags: vec2<f32>,
  samples: array<f32>,
};

@group(0) @binding(0) var<storage, read> image_frame: ImageFrame;
@group(0) @binding(1) var<storage, read_write> rgba_pixels: array<u32>;

@compute @workgroup_size(16, 16)
fn main(@builtin(global_invocation_id) id: vec3<u32>) {
  let columns = image_frame.size.x;
  let rows = image_frame.size.y;
  if (id.x >= columns || id.y >= rows) {
    return;
  }
  let index = id.y * columns + id.x;

  // Modality LUT.
  let value = image_frame.samples[index] * image_frame.scale.x
      + image_frame.scale.y;

  // Linear VOI LUT; window.x = center - 0.5, window.y = width - 1.
  let center = image_frame.window.x;
  let width = image_frame.window.y;
  var level: f32;
  if (width <= 0.0) {
    level = select(0.0, 255.0, value > center);
  } else {
    level = clamp(((value - center) / width + 0.5) * 255.0, 0.0, 255.0);
  }

  // MONOCHROME1
  if (image_frame.flags.y != 0.0) {
    level = 255.0 - level;
  }
  let gray = level / 255.0;
  rgba_pixels[index] = pack4x8unorm(vec4<f32>(gray, gray, gray, 1.0));
}
"""

_LINE_COMMENT = re.compile(r'//.*$', re.MULTILINE)


def minify_shader(code: str) -> str:
  """Returns shader code without comments, indentation, or blank lines."""
  code = _LINE_COMMENT.sub('', code)
  lines = (line.strip() for line in code.splitlines())
  return '\n'.join(line for line in lines if line)

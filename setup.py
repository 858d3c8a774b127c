# !/usr/bin/python
#
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
"""Install script for ez-dicom-render."""

import setuptools

setuptools.setup(
    name='ez_dicom_render',
    version='1.0.0',
    author='Google LLC.',
    author_email='no-reply@google.com',
    license='Apache 2.0',
    description=(
        'A library that decodes one frame of a DICOM instance and renders it'
        ' to RGBA pixels using a WebGPU compute pipeline.'
    ),
    install_requires=[
        'absl-py',
        'cachetools',
        'imagecodecs',
        'numpy',
        'pydicom>=3.0',
        'wgpu>=0.19',
    ],
    extras_require={
        'test': ['pytest'],
    },
    package_dir={
        'ez_dicom_render': 'ez_dicom_render',
        'ez_dicom_render.test_utils': 'ez_dicom_render/test_utils',
    },
    package_data={
        'ez_dicom_render': ['*.md'],
    },
    packages=[
        'ez_dicom_render',
        'ez_dicom_render.test_utils',
    ],
    python_requires='>=3.10',
)

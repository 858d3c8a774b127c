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
"""Pluggable logging used by the DICOM frame renderer.

The renderer never talks to the python logging module directly. It asks a
factory for a logger bound to a signature (e.g. a renderer instance uid) and
passes structured elements (mappings, exceptions) alongside each message.
"""
from __future__ import annotations

import abc
import logging
import time
from typing import Any, Dict, Mapping, Optional, Sequence, Union


OptionalStructureElements = Union[Exception, Mapping[str, Any], None]
DEFAULT_EZ_DICOM_RENDER_PYTHON_LOGGER_NAME = 'ez-dicom-render'


class LogKeywords:
  CACHE_KEY = 'cache_key'
  DECODE_COUNT = 'decode_count'
  EXECUTION_TIME_SEC = 'execution_time_sec'
  FRAME_INDEX = 'frame_index'
  IMAGE_HEIGHT = 'image_height'
  IMAGE_WIDTH = 'image_width'
  PHOTOMETRIC_INTERPRETATION = 'photometric_interpretation'
  RENDERER_INSTANCE_UID = 'renderer_instance_uid'
  TRANSFER_SYNTAX_UID = 'transfer_syntax_uid'


def log_elapsed_time(start_time: float) -> Mapping[str, Any]:
  return {LogKeywords.EXECUTION_TIME_SEC: time.time() - start_time}


class AbstractLoggingInterface(metaclass=abc.ABCMeta):
  """Logging interface for the DICOM frame renderer."""

  @abc.abstractmethod
  def debug(self, msg: str, *args: OptionalStructureElements) -> None:
    """Logs debug message.

    Args:
      msg: Message to log.
      *args: Optional arguments to log as structured logs or additional msg.

    Returns:
      None
    """

  @abc.abstractmethod
  def info(self, msg: str, *args: OptionalStructureElements) -> None:
    """Logs info message."""

  @abc.abstractmethod
  def warning(self, msg: str, *args: OptionalStructureElements) -> None:
    """Logs warning message."""

  @abc.abstractmethod
  def error(self, msg: str, *args: OptionalStructureElements) -> None:
    """Logs error message."""


class AbstractLoggingInterfaceFactory(metaclass=abc.ABCMeta):

  @abc.abstractmethod
  def create_logger(
      self, signature: Optional[Mapping[str, Any]] = None
  ) -> AbstractLoggingInterface:
    """Creates an instance of the logger.

    Args:
      signature: Optional signature element to include as structure or message
        elements in all logs.
    """


def _format_structure(structure: Mapping[str, Any]) -> str:
  return ' '.join(f'{key}={value}' for key, value in structure.items())


class _BasePythonLogger(AbstractLoggingInterface):
  """Writes renderer logs to a python logging.Logger.

  Mapping elements are appended to the message as 'key=value' pairs in the
  order given, followed by the signature. An exception element is attached to
  the log record as exc_info.
  """

  def __init__(
      self,
      pylogger: logging.Logger,
      signature: Optional[Mapping[str, Any]] = None,
  ):
    self._logger = pylogger
    self._signature: Dict[str, Any] = dict(signature or {})

  def _log(
      self, level: int, msg: str, elements: Sequence[OptionalStructureElements]
  ) -> None:
    structure = {}
    exception = None
    for element in elements:
      if isinstance(element, Exception):
        exception = element
      elif element:
        structure.update(element)
    structure.update(self._signature)
    if structure:
      msg = f'{msg} [{_format_structure(structure)}]'
    self._logger.log(level, msg, exc_info=exception)

  def debug(self, msg: str, *args: OptionalStructureElements) -> None:
    self._log(logging.DEBUG, msg, args)

  def info(self, msg: str, *args: OptionalStructureElements) -> None:
    self._log(logging.INFO, msg, args)

  def warning(self, msg: str, *args: OptionalStructureElements) -> None:
    self._log(logging.WARNING, msg, args)

  def error(self, msg: str, *args: OptionalStructureElements) -> None:
    self._log(logging.ERROR, msg, args)


class BasePythonLoggerFactory(AbstractLoggingInterfaceFactory):
  """Creates loggers that write to the named python logger."""

  def __init__(
      self,
      name: Optional[str] = DEFAULT_EZ_DICOM_RENDER_PYTHON_LOGGER_NAME,
  ):
    self._name = name

  def create_logger(
      self, signature: Optional[Mapping[str, Any]] = None
  ) -> _BasePythonLogger:
    return _BasePythonLogger(logging.getLogger(self._name), signature)

# spatialrel/log.py
# Copyright (C) 2026 the spatialrel authors and contributors
# <see AUTHORS file>
#
# This module is part of spatialrel and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""Logging control and utilities.

Control of logging for spatialrel can be performed from the regular python
logging module.  The regular dotted module namespace is used, starting at
'spatialrel'.  For class-level logging, the class name is appended.

The "echo" keyword parameter which is available on
:class:`.SpatialLoader` corresponds to a logger specific to that instance
only.

E.g.::

    loader = SpatialLoader(echo=True)

is equivalent to::

    import logging
    logger = logging.getLogger(
        "spatialrel.loading.SpatialLoader.%s" % loader.logging_name
    )
    logger.setLevel(logging.INFO)

"""

from __future__ import annotations

import logging
import sys
from typing import Any
from typing import Optional
from typing import Type
from typing import Union

rootlogger = logging.getLogger("spatialrel")
if rootlogger.level == logging.NOTSET:
    rootlogger.setLevel(logging.WARN)

_EchoFlagType = Union[None, bool, str]


def _add_default_handler(logger: logging.Logger) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )
    logger.addHandler(handler)


_logged_classes = set()


def _qual_logger_name_for_cls(cls: Type[Any]) -> str:
    return (
        getattr(cls, "_spatialrel_logger_namespace", None)
        or cls.__module__ + "." + cls.__name__
    )


def class_logger(cls):
    logger = logging.getLogger(_qual_logger_name_for_cls(cls))
    cls._should_log_debug = lambda self: logger.isEnabledFor(logging.DEBUG)
    cls._should_log_info = lambda self: logger.isEnabledFor(logging.INFO)
    cls.logger = logger
    _logged_classes.add(cls)
    return cls


class Identified:
    logging_name: Optional[str] = None

    logger: logging.Logger

    _echo: _EchoFlagType

    def _should_log_debug(self) -> bool:
        return self.logger.isEnabledFor(logging.DEBUG)

    def _should_log_info(self) -> bool:
        return self.logger.isEnabledFor(logging.INFO)


def instance_logger(
    instance: Identified, echoflag: _EchoFlagType = None
) -> None:
    """create a logger for an instance that implements :class:`.Identified`."""

    if instance.logging_name:
        name = "%s.%s" % (
            _qual_logger_name_for_cls(instance.__class__),
            instance.logging_name,
        )
    else:
        name = _qual_logger_name_for_cls(instance.__class__)

    instance._echo = echoflag

    logger = logging.getLogger(name)

    if echoflag in (False, None):
        # no echo flag means the logger defers entirely to the
        # "spatialrel" namespace configuration
        pass
    else:
        if echoflag == "debug":
            logger.setLevel(logging.DEBUG)
        else:
            logger.setLevel(logging.INFO)
        if not logger.handlers:
            _add_default_handler(logger)

    instance.logger = logger


class echo_property:
    __doc__ = """\
    When ``True``, enable log output for this element.

    This has the effect of setting the Python logging level for the namespace
    of this element's class and object reference.  A value of boolean ``True``
    indicates that the loglevel ``logging.INFO`` will be set for the logger,
    whereas the string value ``debug`` will set the loglevel to
    ``logging.DEBUG``.
    """

    def __get__(self, instance, owner):
        if instance is None:
            return self
        else:
            return instance._echo

    def __set__(self, instance: Identified, value: _EchoFlagType) -> None:
        instance_logger(instance, echoflag=value)

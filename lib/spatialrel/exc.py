# spatialrel/exc.py
# Copyright (C) 2026 the spatialrel authors and contributors
# <see AUTHORS file>
#
# This module is part of spatialrel and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""Exceptions used with spatialrel.

The base exception class is :exc:`.SpatialRelError`, which is itself a
:class:`sqlalchemy.exc.SQLAlchemyError` so that applications catching
SQLAlchemy errors see ours as well.

"""

from sqlalchemy import exc as sa_exc


class SpatialRelError(sa_exc.SQLAlchemyError):
    """Generic error class."""


class ArgumentError(SpatialRelError, sa_exc.ArgumentError):
    """Raised when an invalid or conflicting option is supplied to a
    spatial relationship.

    This error generally corresponds to construction time state errors,
    such as an unknown spatial relationship name or a
    :func:`_orm.relationship` argument that can't apply to a join on
    geometries.

    """


class ConfigurationError(SpatialRelError, sa_exc.InvalidRequestError):
    """Raised when the target class of a spatial relationship can't be
    resolved.

    The preloader recovers from this error by assigning an empty
    collection to every owner.

    """


class CollaboratorContractError(SpatialRelError):
    """Raised when a row returned by the spatial preload query does not
    carry a usable correlation key.

    This aborts the whole preload; no owner receives a partial result.

    """

    def __init__(self, message, row=None):
        super().__init__(message)
        self.row = row

    def __reduce__(self):
        return self.__class__, (self.args[0], self.row)

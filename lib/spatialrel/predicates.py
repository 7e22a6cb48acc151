# spatialrel/predicates.py
# Copyright (C) 2026 the spatialrel authors and contributors
# <see AUTHORS file>
#
# This module is part of spatialrel and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""Translate spatial relationship names into SQL boolean expressions.

Each relationship name corresponds to a PostGIS predicate function.  The
expression returned by :func:`.spatial_predicate` is a
:class:`.FunctionAsBinary`, so it may be used both in a WHERE or ON clause
and as the ``primaryjoin`` of a :func:`_orm.relationship`.

"""

from __future__ import annotations

from typing import Any
from typing import List
from typing import Optional

from sqlalchemy import Boolean
from sqlalchemy.sql.functions import Function

from . import exc

RELATIONSHIPS = {
    "contains": "ST_Contains",
    "containsproperly": "ST_ContainsProperly",
    "coveredby": "ST_CoveredBy",
    "covers": "ST_Covers",
    "crosses": "ST_Crosses",
    "disjoint": "ST_Disjoint",
    "equals": "ST_Equals",
    "intersects": "ST_Intersects",
    "orderingequals": "ST_OrderingEquals",
    "overlaps": "ST_Overlaps",
    "touches": "ST_Touches",
    "within": "ST_Within",
    "dwithin": "ST_DWithin",
    "dfullywithin": "ST_DFullyWithin",
    "relate": "ST_Relate",
}

# relationships taking a distance as their third argument
DISTANCE_RELATIONSHIPS = frozenset(["dwithin", "dfullywithin"])

# relationships taking a DE-9IM intersection matrix pattern
PATTERN_RELATIONSHIPS = frozenset(["relate"])


def normalize_relationship(relationship: Any) -> str:
    """Return the canonical name of a spatial relationship.

    Names are case insensitive and may contain underscores, so that
    ``"ST_Contains"``, ``"contains"`` and ``"covered_by"`` are all
    accepted.

    """
    name = str(relationship).lower().replace("_", "")
    if name.startswith("st") and name[2:] in RELATIONSHIPS:
        name = name[2:]
    if name not in RELATIONSHIPS:
        raise exc.ArgumentError(
            "Unknown spatial relationship %r; expected one of: %s"
            % (relationship, ", ".join(sorted(RELATIONSHIPS)))
        )
    return name


def function_name(relationship: str, use_index: bool = True) -> str:
    name = RELATIONSHIPS[normalize_relationship(relationship)]
    if not use_index:
        # PostGIS exposes the predicate minus its bounding box
        # index test under a leading underscore
        return "_" + name
    return name


def extra_arguments(
    relationship: str,
    distance: Optional[Any] = None,
    pattern: Optional[str] = None,
) -> List[Any]:
    """Return the arguments following the two geometries for the given
    relationship, raising :class:`.ArgumentError` if one is missing or not
    accepted."""

    name = normalize_relationship(relationship)
    args = []

    if name in DISTANCE_RELATIONSHIPS:
        if distance is None:
            raise exc.ArgumentError(
                "Spatial relationship %r requires a 'distance' scope option"
                % name
            )
        args.append(distance)
    elif distance is not None:
        raise exc.ArgumentError(
            "Spatial relationship %r does not accept a distance" % name
        )

    if name in PATTERN_RELATIONSHIPS:
        if pattern is None:
            raise exc.ArgumentError(
                "Spatial relationship %r requires a 'pattern' scope option"
                % name
            )
        args.append(pattern)
    elif pattern is not None:
        raise exc.ArgumentError(
            "Spatial relationship %r does not accept a pattern" % name
        )

    return args


def spatial_predicate(
    relationship: str,
    geom: Any,
    foreign_geom: Any,
    invert: bool = True,
    use_index: bool = True,
    distance: Optional[Any] = None,
    pattern: Optional[str] = None,
):
    """Produce the SQL predicate testing ``relationship`` between two
    geometry expressions.

    :param relationship: a name from :data:`.RELATIONSHIPS`.

    :param geom: the geometry expression of the owning side.

    :param foreign_geom: the geometry expression of the related side.

    :param invert: when ``True``, the owning geometry is the first
     argument, e.g. ``ST_Contains(owner.geom, related.geom)``, which reads
     as "owner contains related".  When ``False`` the arguments are
     swapped.

    :param use_index: when ``False``, the non-indexed ``_ST_`` variant of the
     function is used.

    :param distance: required by ``dwithin`` and ``dfullywithin``.

    :param pattern: required by ``relate``.

    """
    if invert:
        args = [geom, foreign_geom]
    else:
        args = [foreign_geom, geom]
    args.extend(extra_arguments(relationship, distance, pattern))

    fn = Function(
        function_name(relationship, use_index), *args, type_=Boolean()
    )
    return fn.as_comparison(1, 2)

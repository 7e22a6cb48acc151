# spatialrel/associations.py
# Copyright (C) 2026 the spatialrel authors and contributors
# <see AUTHORS file>
#
# This module is part of spatialrel and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""Spatial relationships between mapped classes.

A spatial relationship is a one-to-many style :func:`_orm.relationship`
whose join condition is a spatial predicate between two geometry columns
rather than a foreign key comparison::

    from spatialrel import spatial_relationship


    class Neighbourhood(Base):
        __tablename__ = "neighbourhood"

        id = mapped_column(Integer, primary_key=True)
        the_geom = mapped_column(Geometry("POLYGON"))

        cities = spatial_relationship("City", "contains")


    class City(Base):
        __tablename__ = "city"

        id = mapped_column(Integer, primary_key=True)
        the_geom = mapped_column(Geometry("POLYGON"))

        neighbourhoods = spatial_relationship("Neighbourhood", "within")

Above, ``Neighbourhood.cities`` lazy loads with::

    SELECT city.id, city.the_geom FROM city
    WHERE ST_Contains(:param_1, city.the_geom)

and may be eagerly loaded for many neighbourhoods at once using
:func:`.spatialload`.

Spatial relationships should be considered read only.  Geometries don't
map onto the identity of rows the way foreign keys do, so the relationship
is always ``viewonly=True`` and arguments that configure persistence, such
as ``secondary``, ``cascade`` or ``back_populates``, are rejected.

"""

from __future__ import annotations

from typing import Any
from typing import Callable
from typing import Dict
from typing import Iterable
from typing import Mapping
from typing import Optional

from sqlalchemy import and_
from sqlalchemy import inspect as sa_inspect
from sqlalchemy import orm
from sqlalchemy import select
from sqlalchemy import util
from sqlalchemy.orm import aliased
from sqlalchemy.orm import foreign
from sqlalchemy.orm import RelationshipProperty

from . import exc
from . import predicates
from .functions import spatial_ids
from .preloading import SPATIAL_FIELD_ALIAS
from .preloading import SPATIAL_JOIN_NAME

DEFAULT_COLUMN_NAME = "the_geom"

SPATIAL_INFO_KEY = "spatial_association"

VALID_SCOPE_OPTIONS = frozenset(
    ["invert", "use_index", "distance", "pattern", "column"]
)

INVALID_RELATIONSHIP_OPTIONS = (
    "secondary",
    "backref",
    "back_populates",
    "cascade",
    "primaryjoin",
    "secondaryjoin",
    "foreign_keys",
    "remote_side",
    "post_update",
    "passive_deletes",
    "single_parent",
)

_default_column_name = DEFAULT_COLUMN_NAME


def set_default_column_name(name: str) -> None:
    """Set the geometry column name assumed by spatial relationships
    which don't specify ``geom`` or ``foreign_geom``.

    The default is ``"the_geom"``, as is often seen in PostGIS
    documentation.  The setting applies to relationships constructed
    after the call.

    """
    global _default_column_name
    _default_column_name = name


def get_default_column_name() -> str:
    return _default_column_name


def default_options() -> Dict[str, Any]:
    return {
        "relationship": "intersects",
        "geom": _default_column_name,
        "foreign_geom": _default_column_name,
        "scope_options": {"invert": True},
    }


def _deep_merge(base, other):
    merged = dict(base)
    for key, value in other.items():
        if isinstance(value, Mapping) and isinstance(
            merged.get(key), Mapping
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def build_options(options: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge the given spatial options over :func:`.default_options`.

    ``None`` values are treated as absent.  When ``foreign_geom`` is absent
    and ``as_`` is given, the related geometry column defaults to
    ``"<as_>_geom"``.

    """
    options = {k: v for k, v in options.items() if v is not None}

    if not options.get("foreign_geom") and options.get("as_"):
        options["foreign_geom"] = "%s_geom" % options["as_"]

    # only "name" is read from a geometry mapping; other keys, such as
    # a column type or srid, are accepted and ignored
    geom = options.get("geom")
    if isinstance(geom, Mapping):
        options["geom"] = geom.get("name") or _default_column_name

    scope_options = options.get("scope_options", {})
    unknown = set(scope_options).difference(VALID_SCOPE_OPTIONS)
    if unknown:
        raise exc.ArgumentError(
            "Unknown scope options: %s; valid options are: %s"
            % (
                ", ".join(sorted(unknown)),
                ", ".join(sorted(VALID_SCOPE_OPTIONS)),
            )
        )

    merged = _deep_merge(default_options(), options)
    merged["relationship"] = predicates.normalize_relationship(
        merged["relationship"]
    )
    merged["scope_options"]["column"] = merged["foreign_geom"]
    return merged


class SpatialAssociation:
    """Describe the spatial side of a :func:`.spatial_relationship`.

    An instance is stored in the ``info`` dictionary of the
    :class:`.RelationshipProperty` it belongs to; use
    :func:`.spatial_association` to retrieve it from a mapped attribute.

    """

    prop: Optional[RelationshipProperty[Any]] = None

    def __init__(
        self,
        argument: Any,
        relationship: str,
        geom: str,
        foreign_geom: str,
        scope_options: Mapping[str, Any],
        as_: Optional[str] = None,
    ):
        self.argument = argument
        self.relationship = relationship
        self.geom = geom
        self.foreign_geom = foreign_geom
        self.scope_options = dict(scope_options)
        self.as_ = as_

        predicates.extra_arguments(
            relationship,
            self.scope_options.get("distance"),
            self.scope_options.get("pattern"),
        )

    @property
    def invert(self) -> bool:
        return bool(self.scope_options.get("invert", True))

    @property
    def key(self) -> Optional[str]:
        return getattr(self.prop, "key", None)

    @property
    def owner_class(self):
        if getattr(self.prop, "parent", None) is None:
            raise exc.ConfigurationError(
                "Spatial association %r is not attached to a mapped "
                "relationship" % self
            )
        return self.prop.parent.class_

    def resolve_target(self):
        """Return the related mapped class.

        Raises :class:`.ConfigurationError` if the class named by the
        relationship can't be located in the owner's registry.

        """
        argument = self.argument
        if callable(argument) and not isinstance(argument, type):
            argument = argument()

        if isinstance(argument, str):
            return self._resolve_name(argument)

        insp = sa_inspect(argument, raiseerr=False)
        if insp is None or not getattr(insp, "is_mapper", False):
            raise exc.ConfigurationError(
                "Spatial relationship target %r is not a mapped class"
                % (argument,)
            )
        return insp.class_

    def _resolve_name(self, name):
        registry = self.owner_class.__mapper__.registry
        candidates = [
            mapper.class_
            for mapper in registry.mappers
            if name
            in (
                mapper.class_.__name__,
                "%s.%s" % (mapper.class_.__module__, mapper.class_.__name__),
            )
        ]
        if not candidates:
            raise exc.ConfigurationError(
                "Can't resolve spatial relationship target %r for %s"
                % (name, self)
            )
        elif len(candidates) > 1:
            raise exc.ConfigurationError(
                "Multiple classes found for spatial relationship target %r; "
                "use a module-qualified name" % name
            )
        return candidates[0]

    @util.memoized_property
    def owner_key_column(self):
        mapper = self.prop.parent
        if len(mapper.primary_key) != 1:
            raise exc.ArgumentError(
                "Spatial relationship %s requires a single-column primary "
                "key on %s" % (self, mapper)
            )
        return mapper.primary_key[0]

    @util.memoized_property
    def owner_key_attribute(self) -> str:
        return self.prop.parent.get_property_by_column(
            self.owner_key_column
        ).key

    def key_from_token(self, dialect) -> Callable[[str], Any]:
        """Return a callable converting an owner key token of a correlation
        key back into the owner key value.

        The token is the database's own text for the stored key, which
        need not match the key's Python string form; a :class:`.Uuid`
        stored as 32 hex digits is one example.  The primary key type's
        result processor for ``dialect`` is applied first, then the
        type's ``python_type`` if the value isn't one already.  A token
        that can't be converted is returned unchanged, and so matches no
        owner.

        """
        impl = self.owner_key_column.type.dialect_impl(dialect)
        processor = impl.result_processor(dialect, None)
        try:
            python_type = impl.python_type
        except NotImplementedError:
            python_type = None

        def convert(token):
            value = token
            if processor is not None:
                try:
                    value = processor(token)
                except (TypeError, ValueError):
                    value = token
            if python_type is not None and not isinstance(
                value, python_type
            ):
                try:
                    value = python_type(value)
                except (TypeError, ValueError):
                    return token
            return value

        return convert

    def owner_key(self, owner: Any) -> Any:
        return getattr(owner, self.owner_key_attribute)

    def predicate(self, geom, foreign_geom):
        scope = self.scope_options
        return predicates.spatial_predicate(
            self.relationship,
            geom,
            foreign_geom,
            invert=self.invert,
            use_index=scope.get("use_index", True),
            distance=scope.get("distance"),
            pattern=scope.get("pattern"),
        )

    def _attribute(self, entity, name, kind="geometry"):
        attr = getattr(entity, name, None)
        if attr is None:
            raise exc.ArgumentError(
                "%s has no %s attribute %r for spatial relationship %s"
                % (entity, kind, name, self)
            )
        return attr

    @property
    def polymorphic_type(self) -> Optional[str]:
        """The value of the target's ``<as_>_type`` column identifying
        rows which belong to this association's owners, or ``None`` when
        the association isn't polymorphic."""

        if not self.as_:
            return None
        return self.prop.parent.base_mapper.class_.__name__

    def _polymorphic_criteria(self, target, annotate=lambda expr: expr):
        type_attr = self._attribute(
            target, "%s_type" % self.as_, "polymorphic type"
        )
        return annotate(type_attr) == self.polymorphic_type

    def join_condition(self):
        """Return the relationship's ``primaryjoin``.

        Invoked by the ORM when mappers are configured.

        """
        target = self.resolve_target()
        condition = self.predicate(
            self._attribute(self.owner_class, self.geom),
            foreign(self._attribute(target, self.foreign_geom)),
        )
        if self.as_:
            condition = and_(
                condition, self._polymorphic_criteria(target, foreign)
            )
        return condition

    def select_related(self, owner_keys: Iterable[Any]):
        """Return the statement loading related rows for the given owner
        keys.

        Each row is ``(correlation key, related object)``, where the
        correlation key lists the keys of every owner in ``owner_keys``
        the object relates to, joined with commas.

        """
        orm.configure_mappers()

        target = self.resolve_target()
        owner = aliased(self.owner_class, name=SPATIAL_JOIN_NAME)
        owner_pk = getattr(owner, self.owner_key_attribute)

        stmt = (
            select(spatial_ids(owner_pk).label(SPATIAL_FIELD_ALIAS), target)
            .select_from(target)
            .join(
                owner,
                self.predicate(
                    self._attribute(owner, self.geom),
                    self._attribute(target, self.foreign_geom),
                ),
            )
            .where(owner_pk.in_(list(owner_keys)))
            .group_by(*sa_inspect(target).primary_key)
        )
        if self.as_:
            stmt = stmt.where(self._polymorphic_criteria(target))

        if self.prop is not None and self.prop.order_by:
            stmt = stmt.order_by(*self.prop.order_by)
        return stmt

    def __repr__(self):
        if getattr(self.prop, "parent", None) is not None:
            return "%s.%s" % (self.prop.parent.class_.__name__, self.key)
        return "<%s %s %r>" % (
            self.__class__.__name__,
            self.relationship,
            self.argument,
        )


def spatial_relationship(
    argument: Any,
    relationship: str = "intersects",
    *,
    geom: Optional[Any] = None,
    foreign_geom: Optional[str] = None,
    scope_options: Optional[Mapping[str, Any]] = None,
    as_: Optional[str] = None,
    **kw: Any,
) -> RelationshipProperty[Any]:
    """Provide a relationship between two mapped classes based on a
    spatial predicate between their geometry columns.

    :param argument: the target class, its name, or a callable returning
     it, as accepted by :func:`_orm.relationship`.

    :param relationship: the spatial relationship, one of
     :data:`.predicates.RELATIONSHIPS`.  Defaults to ``"intersects"``.

    :param geom: name of the geometry attribute on the owning class.
     Defaults to :func:`.get_default_column_name`.  May also be given as
     a dictionary with a ``"name"`` key; other keys are ignored.

    :param foreign_geom: name of the geometry attribute on the target
     class.  Defaults to ``"<as_>_geom"`` when ``as_`` is given, otherwise
     to :func:`.get_default_column_name`.

    :param scope_options: options for the spatial predicate; merged over
     ``{"invert": True}``.  ``invert`` places the owning geometry first so
     that "Foo contains many Bars" renders as
     ``ST_Contains(foo.the_geom, bar.the_geom)``; ``use_index=False``
     selects the non-indexed ``_ST_`` function; ``distance`` and
     ``pattern`` supply the extra argument of ``dwithin``,
     ``dfullywithin`` and ``relate``.

    :param as_: name of a polymorphic association.  Related rows are
     limited to those whose ``<as_>_type`` attribute names the owning
     class, and ``foreign_geom`` defaults to ``"<as_>_geom"``.

    :param \\**kw: additional arguments passed to :func:`_orm.relationship`,
     such as ``order_by`` or ``lazy``.

    """
    for key in INVALID_RELATIONSHIP_OPTIONS:
        if key in kw:
            raise exc.ArgumentError(
                "The %r argument is not supported by spatial relationships"
                % key
            )
    for key in ("viewonly", "uselist"):
        if not kw.pop(key, True):
            raise exc.ArgumentError(
                "Spatial relationships are always %s=True" % key
            )

    options = build_options(
        {
            "relationship": relationship,
            "geom": geom,
            "foreign_geom": foreign_geom,
            "scope_options": scope_options,
            "as_": as_,
        }
    )
    association = SpatialAssociation(argument, **options)

    info = dict(kw.pop("info", None) or {})
    info[SPATIAL_INFO_KEY] = association

    prop = orm.relationship(
        argument,
        primaryjoin=association.join_condition,
        viewonly=True,
        uselist=True,
        sync_backref=False,
        info=info,
        **kw,
    )
    association.prop = prop
    return prop


def is_spatial(prop: Any) -> bool:
    """Return True if the given mapper property is a spatial relationship."""

    return isinstance(prop, RelationshipProperty) and isinstance(
        prop.info.get(SPATIAL_INFO_KEY), SpatialAssociation
    )


def spatial_association(attr: Any) -> SpatialAssociation:
    """Return the :class:`.SpatialAssociation` of a mapped attribute or
    relationship property.

    Raises :class:`.ArgumentError` if the attribute is not a spatial
    relationship.

    """
    prop = getattr(attr, "property", attr)
    if not is_spatial(prop):
        raise exc.ArgumentError(
            "%s is not a spatial relationship" % (attr,)
        )
    return prop.info[SPATIAL_INFO_KEY]

# spatialrel/loading.py
# Copyright (C) 2026 the spatialrel authors and contributors
# <see AUTHORS file>
#
# This module is part of spatialrel and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""Eager loading of spatial relationships.

Spatial relationships lazy load using the ORM's regular machinery.  To load
one for many objects at once, either call :func:`.preload_spatially` with
the objects, or install a :class:`.SpatialLoader` on a :class:`.Session` and
use the :class:`.spatialload` option::

    loader = SpatialLoader()
    loader.listen_on_session(Session)

    neighbourhoods = session.scalars(
        select(Neighbourhood).options(spatialload(Neighbourhood.cities))
    ).all()

The three concepts introduced here are:

 * SpatialLoader - an extension for an ORM :class:`.Session` which
   runs spatial preloads after the statement they're attached to.
 * spatialload - a statement option naming the spatial relationships to
   preload for the objects the statement returns.
 * preload_spatially - the preload itself, for an explicit collection of
   objects.

"""

from __future__ import annotations

from typing import Any
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional

from sqlalchemy import event
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Row
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.orm.interfaces import UserDefinedOption

from . import log
from .associations import spatial_association
from .associations import SpatialAssociation
from .preloading import SpatialPreloadBatcher

# the longest IN list each backend accepts
IN_CLAUSE_LENGTHS = {"oracle": 1000, "mssql": 2000}


def in_clause_length(dialect) -> Optional[int]:
    """Return the maximum number of owner keys per preload query for the
    given dialect, or ``None`` if the backend imposes no limit."""

    return IN_CLAUSE_LENGTHS.get(dialect.name)


def _association_for(attr):
    if isinstance(attr, SpatialAssociation):
        return attr
    return spatial_association(attr)


def preload_spatially(
    session,
    owners: Iterable[Any],
    attr: Any,
    batch_size: Optional[int] = None,
    populate_existing: bool = False,
) -> Dict[Any, List[Any]]:
    """Load a spatial relationship for many objects using a small, fixed
    number of queries.

    The related objects are set on each owner as the committed value of the
    relationship, as though it had been lazy loaded.

    :param session: the :class:`.Session` to query with.

    :param owners: instances of the class declaring the relationship.

    :param attr: the spatial relationship attribute, e.g.
     ``Neighbourhood.cities``.

    :param batch_size: the maximum number of owners per query.  Defaults to
     :func:`.in_clause_length` for the session's dialect.

    :param populate_existing: when ``False``, owners which already have the
     relationship loaded are left alone.

    :return: a dictionary of owner to its list of related objects, for the
     owners which were loaded.

    """
    association = _association_for(attr)
    key = association.key

    owners = list(owners)
    if not populate_existing:
        owners = [
            owner for owner in owners if key not in sa_inspect(owner).dict
        ]
    if not owners:
        return {}

    dialect = session.get_bind(mapper=association.owner_class).dialect
    if batch_size is None:
        batch_size = in_clause_length(dialect)

    def query_related(owner_keys, association):
        stmt = association.select_related(owner_keys)
        if populate_existing:
            stmt = stmt.execution_options(populate_existing=True)
        return session.execute(stmt).all()

    batcher = SpatialPreloadBatcher(
        association,
        query_related,
        key_from_token=association.key_from_token(dialect),
    )
    records_by_owner = batcher.load(owners, batch_size)

    for owner, records in records_by_owner.items():
        set_committed_value(owner, key, records)
    return records_by_owner


class SpatialLoader(log.Identified):
    """An add-on for an ORM :class:`.Session` which preloads the spatial
    relationships named by :class:`.spatialload` options.

    :param batch_size: default maximum number of owners per preload query,
     for options that don't specify one.  When ``None``, the dialect's
     :func:`.in_clause_length` applies.

    :param echo: if ``True``, the loader logs each preload it performs to
     the ``spatialrel.loading.SpatialLoader`` logger, which is configured
     with a stdout handler.  ``"debug"`` logs at DEBUG level.

    """

    def __init__(
        self,
        batch_size: Optional[int] = None,
        echo: log._EchoFlagType = None,
        logging_name: Optional[str] = None,
    ):
        self.batch_size = batch_size
        if logging_name:
            self.logging_name = logging_name
        log.instance_logger(self, echoflag=echo)

    echo = log.echo_property()

    def listen_on_session(self, session_factory):
        event.listen(session_factory, "do_orm_execute", self._do_orm_execute)

    def remove_from_session(self, session_factory):
        event.remove(session_factory, "do_orm_execute", self._do_orm_execute)

    def _do_orm_execute(self, orm_context):
        options = [
            opt
            for opt in orm_context.user_defined_options
            if isinstance(opt, spatialload)
        ]
        if not options or not orm_context.is_select:
            return None

        frozen = orm_context.invoke_statement().freeze()
        instances = list(_loaded_instances(frozen))
        populate_existing = orm_context.execution_options.get(
            "populate_existing", False
        )

        for opt in options:
            batch_size = (
                opt.batch_size
                if opt.batch_size is not None
                else self.batch_size
            )
            for association in opt.associations:
                owner_class = association.owner_class
                owners = [
                    obj for obj in instances if isinstance(obj, owner_class)
                ]
                if self._should_log_info():
                    self.logger.info(
                        "Preloading %s for %d objects",
                        association,
                        len(owners),
                    )
                preload_spatially(
                    orm_context.session,
                    owners,
                    association,
                    batch_size=batch_size,
                    populate_existing=populate_existing,
                )

        return frozen()


def _loaded_instances(frozen):
    for row in frozen.data:
        if isinstance(row, Row):
            yield from row
        else:
            yield row


class spatialload(UserDefinedOption):
    """Indicate that the given spatial relationships should be loaded for
    all objects a statement returns, in batches.

    E.g.::

        stmt = select(City).options(
            spatialload(City.neighbourhoods, batch_size=500)
        )

    The option takes effect only for a :class:`.Session` on which a
    :class:`.SpatialLoader` is listening.

    :param \\*attrs: spatial relationship attributes.

    :param batch_size: maximum number of owners per preload query.

    """

    propagate_to_loaders = False

    def __init__(self, *attrs: Any, batch_size: Optional[int] = None):
        self.associations = tuple(_association_for(attr) for attr in attrs)
        self.batch_size = batch_size
        self.payload = None

    def _gen_cache_key(self, anon_map, bindparams):
        return None

# spatialrel/functions.py
# Copyright (C) 2026 the spatialrel authors and contributors
# <see AUTHORS file>
#
# This module is part of spatialrel and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""The ``spatial_ids()`` aggregate.

The spatial preload query groups related rows by their primary key and
reports, for each one, every owner key it matched as a single delimited
string.  There is no portable SQL for "join these values with a comma", so
the aggregate is rendered per-dialect using :mod:`sqlalchemy.ext.compiler`::

    >>> from sqlalchemy import column, select
    >>> print(select(spatial_ids(column("id"))))
    SELECT group_concat(id, ',') AS spatial_ids_1

"""

from sqlalchemy import String
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.functions import FunctionElement

SPATIAL_IDS_DELIMITER = ","


class spatial_ids(FunctionElement):
    """Aggregate the given expression into a comma-delimited string."""

    name = "spatial_ids"
    type = String()
    inherit_cache = True


def _delimiter(compiler, **kw):
    return compiler.render_literal_value(SPATIAL_IDS_DELIMITER, String())


@compiles(spatial_ids)
def _default_spatial_ids(element, compiler, **kw):
    return "group_concat(%s, %s)" % (
        compiler.process(element.clauses, **kw),
        _delimiter(compiler),
    )


@compiles(spatial_ids, "postgresql")
def _pg_spatial_ids(element, compiler, **kw):
    return "array_to_string(array_agg(%s), %s)" % (
        compiler.process(element.clauses, **kw),
        _delimiter(compiler),
    )


@compiles(spatial_ids, "mysql")
@compiles(spatial_ids, "mariadb")
def _mysql_spatial_ids(element, compiler, **kw):
    return "group_concat(%s SEPARATOR %s)" % (
        compiler.process(element.clauses, **kw),
        _delimiter(compiler),
    )


@compiles(spatial_ids, "oracle")
def _oracle_spatial_ids(element, compiler, **kw):
    expr = compiler.process(element.clauses, **kw)
    return "LISTAGG(%s, %s) WITHIN GROUP (ORDER BY %s)" % (
        expr,
        _delimiter(compiler),
        expr,
    )


@compiles(spatial_ids, "mssql")
def _mssql_spatial_ids(element, compiler, **kw):
    return "STRING_AGG(CAST(%s AS NVARCHAR(max)), %s)" % (
        compiler.process(element.clauses, **kw),
        _delimiter(compiler),
    )

# spatialrel/preloading.py
# Copyright (C) 2026 the spatialrel authors and contributors
# <see AUTHORS file>
#
# This module is part of spatialrel and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""Batched loading of spatially related records for many owners at once.

A foreign key relationship can be eagerly loaded by grouping related rows on
the foreign key column.  A spatial relationship has no such column; a single
related row may satisfy the predicate for any number of owners.  The preload
query therefore reports, for each related row, the keys of every owner it
matched as one comma-delimited string, the "correlation key", and
:class:`.SpatialPreloadBatcher` fans each row back out to those owners.

"""

from __future__ import annotations

from typing import Any
from typing import Callable
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional
from typing import Sequence
from typing import Tuple

from . import exc
from . import log
from .functions import SPATIAL_IDS_DELIMITER

SPATIAL_FIELD_ALIAS = "__spatial_ids__"
SPATIAL_JOIN_NAME = "__spatial_ids_join__"

_QueryRelated = Callable[[Sequence[Any], Any], Iterable[Tuple[str, Any]]]


@log.class_logger
class SpatialPreloadBatcher:
    """Load the related records of a spatial association for a collection
    of owners.

    :param association: the association being loaded.  Must provide
     ``owner_key(owner)``, returning the key an owner is correlated by or
     ``None``, and ``resolve_target()``, returning the related class or
     raising :class:`.ConfigurationError`.

    :param query_related: a callable ``query_related(owner_keys,
     association)`` returning ``(correlation_key, record)`` rows for every
     record related to at least one of ``owner_keys``.  It is invoked once
     per batch of keys.

    :param key_from_token: optional callable converting one owner key
     token of a correlation key, as rendered by the database, back into
     the owner key value.  When omitted, owners are matched on the
     string form of their key.

    """

    def __init__(
        self,
        association: Any,
        query_related: _QueryRelated,
        key_from_token: Optional[Callable[[str], Any]] = None,
    ):
        self.association = association
        self.query_related = query_related
        self.key_from_token = key_from_token

    def load(
        self, owners: Iterable[Any], max_batch_size: Optional[int] = None
    ) -> Dict[Any, List[Any]]:
        """Return a dictionary of each owner to the list of its related
        records.

        Every owner is present in the result, with an empty list when
        nothing relates to it.  Owners whose key is ``None`` are not
        queried for.  ``max_batch_size`` bounds the number of owner keys
        sent per query; ``None`` or a non-positive value sends all keys in
        one query.

        """
        owners = list(dict.fromkeys(owners))
        owners_by_key = self._owners_by_key(owners)

        records_by_owner: Dict[Any, List[Any]] = {
            owner: [] for owner in owners
        }

        owner_keys = [
            owners_for_key[0][0] for owners_for_key in owners_by_key.values()
        ]
        if not owner_keys:
            return records_by_owner

        try:
            self.association.resolve_target()
        except exc.ConfigurationError as err:
            self.logger.warning(
                "Skipping spatial preload of %s: %s", self.association, err
            )
            return records_by_owner

        rows = []
        for chunk in self._chunks(owner_keys, max_batch_size):
            if self._should_log_debug():
                self.logger.debug(
                    "Loading %s for %d owner keys",
                    self.association,
                    len(chunk),
                )
            rows.extend(self.query_related(chunk, self.association))

        for row in rows:
            spatial_ids, record = self._correlated(row)
            for token in spatial_ids.split(SPATIAL_IDS_DELIMITER):
                try:
                    owners_for_key = owners_by_key[self._token_key(token)]
                except KeyError as err:
                    raise exc.CollaboratorContractError(
                        "Spatial preload of %s returned a row correlated to "
                        "owner key %r, which was not requested"
                        % (self.association, token),
                        row,
                    ) from err
                for _, owner in owners_for_key:
                    records_by_owner[owner].append(record)

        if self._should_log_info():
            self.logger.info(
                "Preloaded %s: %d owners, %d rows",
                self.association,
                len(owners),
                len(rows),
            )
        return records_by_owner

    def _owners_by_key(self, owners):
        # the key itself goes into the query; the index holds whatever
        # _token_key() makes of the token the database reports for it
        owners_by_key: Dict[Any, List[Tuple[Any, Any]]] = {}
        for owner in owners:
            key = self.association.owner_key(owner)
            if key is None:
                continue
            index_key = str(key) if self.key_from_token is None else key
            owners_by_key.setdefault(index_key, []).append((key, owner))
        return owners_by_key

    def _token_key(self, token):
        if self.key_from_token is None:
            return token
        return self.key_from_token(token)

    def _chunks(self, owner_keys, chunksize):
        if not chunksize or chunksize <= 0:
            chunksize = len(owner_keys)

        while owner_keys:
            chunk = owner_keys[0:chunksize]
            owner_keys = owner_keys[chunksize:]
            yield chunk

    def _correlated(self, row):
        try:
            spatial_ids, record = row
        except (TypeError, ValueError) as err:
            raise exc.CollaboratorContractError(
                "Spatial preload of %s returned a row without a %r "
                "correlation key: %r"
                % (self.association, SPATIAL_FIELD_ALIAS, row),
                row,
            ) from err

        if not isinstance(spatial_ids, str):
            raise exc.CollaboratorContractError(
                "Spatial preload of %s returned a malformed %r correlation "
                "key: %r"
                % (self.association, SPATIAL_FIELD_ALIAS, spatial_ids),
                row,
            )
        return spatial_ids, record

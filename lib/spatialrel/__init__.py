# spatialrel/__init__.py
# Copyright (C) 2026 the spatialrel authors and contributors
# <see AUTHORS file>
#
# This module is part of spatialrel and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

from .associations import build_options
from .associations import get_default_column_name
from .associations import is_spatial
from .associations import set_default_column_name
from .associations import spatial_association
from .associations import spatial_relationship
from .associations import SpatialAssociation
from .exc import ArgumentError
from .exc import CollaboratorContractError
from .exc import ConfigurationError
from .exc import SpatialRelError
from .functions import spatial_ids
from .loading import in_clause_length
from .loading import preload_spatially
from .loading import spatialload
from .loading import SpatialLoader
from .predicates import RELATIONSHIPS
from .predicates import spatial_predicate
from .preloading import SPATIAL_FIELD_ALIAS
from .preloading import SpatialPreloadBatcher

__version__ = "0.3.0"

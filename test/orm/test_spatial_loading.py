import logging
import uuid

from sqlalchemy import Column
from sqlalchemy import Integer
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import testing
from sqlalchemy import Uuid
from sqlalchemy.dialects import mssql
from sqlalchemy.dialects import oracle
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects import sqlite
from sqlalchemy.orm import Session
from sqlalchemy.testing import eq_
from sqlalchemy.testing import expect_raises_message
from sqlalchemy.testing import fixtures
from sqlalchemy.testing import is_
from sqlalchemy.testing import mock
from sqlalchemy.testing.fixtures import fixture_session
from spatialrel import exc
from spatialrel import in_clause_length
from spatialrel import preload_spatially
from spatialrel import spatial_association
from spatialrel import spatial_relationship
from spatialrel import spatialload
from spatialrel import SpatialLoader


def _box(value):
    minx, miny, maxx, maxy = (float(v) for v in value.split())
    return minx, miny, maxx, maxy


def _contains(outer, inner):
    if outer is None or inner is None:
        return None
    a, b = _box(outer), _box(inner)
    return a[0] <= b[0] and a[1] <= b[1] and a[2] >= b[2] and a[3] >= b[3]


def _within(inner, outer):
    return _contains(outer, inner)


def _intersects(left, right):
    if left is None or right is None:
        return None
    a, b = _box(left), _box(right)
    return not (a[2] < b[0] or b[2] < a[0] or a[3] < b[1] or b[3] < a[1])


def install_box_functions(connection):
    """Install bounding box stand-ins for the PostGIS predicates on
    an SQLite connection.  Geometries are "minx miny maxx maxy" strings."""

    dbapi_connection = connection.connection.dbapi_connection
    dbapi_connection.create_function("ST_Contains", 2, _contains)
    dbapi_connection.create_function("ST_Within", 2, _within)
    dbapi_connection.create_function("ST_Intersects", 2, _intersects)


class InClauseLengthTest(fixtures.TestBase):
    @testing.combinations(
        (oracle.dialect, 1000),
        (mssql.dialect, 2000),
        (postgresql.dialect, None),
        (sqlite.dialect, None),
    )
    def test_in_clause_length(self, dialect_cls, expected):
        eq_(in_clause_length(dialect_cls()), expected)


class SpatialLoaderLoggingTest(fixtures.TestBase):
    def test_default_logger(self):
        loader = SpatialLoader()
        eq_(loader.logger.name, "spatialrel.loading.SpatialLoader")
        is_(loader.echo, None)

    def test_echo(self):
        loader = SpatialLoader(echo=True, logging_name="echo_test")
        eq_(loader.logger.name, "spatialrel.loading.SpatialLoader.echo_test")
        eq_(loader.logger.level, logging.INFO)
        is_(loader.echo, True)

        loader.echo = "debug"
        eq_(loader.logger.level, logging.DEBUG)
        eq_(loader.echo, "debug")
        eq_(len(loader.logger.handlers), 1)


class BoxFunctionsFixture:
    @testing.fixture(autouse=True)
    def box_functions(self):
        # the in-memory database is held by a single pooled connection,
        # so functions installed here are seen by every session
        with testing.db.connect() as conn:
            install_box_functions(conn)


class SpatialLoadingTest(BoxFunctionsFixture, fixtures.DeclarativeMappedTest):
    __only_on__ = "sqlite"

    run_inserts = "once"
    run_deletes = None

    @classmethod
    def setup_classes(cls):
        Base = cls.DeclarativeBasic

        class Neighbourhood(Base):
            __tablename__ = "neighbourhood"

            id = Column(Integer, primary_key=True)
            name = Column(String(50))
            the_geom = Column(String(100))

            cities = spatial_relationship(
                "City", "contains", order_by="City.id"
            )

        class City(Base):
            __tablename__ = "city"

            id = Column(Integer, primary_key=True)
            name = Column(String(50))
            the_geom = Column(String(100))

            neighbourhoods = spatial_relationship(
                "Neighbourhood", "within", order_by="Neighbourhood.id"
            )

    @classmethod
    def insert_data(cls, connection):
        Neighbourhood, City = cls.classes("Neighbourhood", "City")

        s = Session(connection)
        s.add_all(
            [
                Neighbourhood(id=1, name="n1", the_geom="0 0 10 10"),
                Neighbourhood(id=2, name="n2", the_geom="5 5 20 20"),
                Neighbourhood(id=3, name="n3", the_geom="100 100 110 110"),
                City(id=1, name="c1", the_geom="6 6 8 8"),
                City(id=2, name="c2", the_geom="1 1 2 2"),
                City(id=3, name="c3", the_geom="15 15 16 16"),
                City(id=4, name="c4", the_geom="50 50 51 51"),
            ]
        )
        s.commit()

    def _neighbourhoods(self, session):
        Neighbourhood = self.classes.Neighbourhood
        return session.scalars(
            select(Neighbourhood).order_by(Neighbourhood.id)
        ).all()

    def test_lazy_load(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()

        eq_([c.id for c in s.get(Neighbourhood, 1).cities], [1, 2])
        eq_([c.id for c in s.get(Neighbourhood, 2).cities], [1, 3])
        eq_(s.get(Neighbourhood, 3).cities, [])

    def test_lazy_load_within(self):
        City = self.classes.City
        s = fixture_session()

        eq_([n.id for n in s.get(City, 1).neighbourhoods], [1, 2])
        eq_([n.id for n in s.get(City, 2).neighbourhoods], [1])
        eq_(s.get(City, 4).neighbourhoods, [])

    def test_preload(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()
        ns = self._neighbourhoods(s)

        def go():
            result = preload_spatially(s, ns, Neighbourhood.cities)
            eq_(
                {n.id: [c.id for c in cities] for n, cities in result.items()},
                {1: [1, 2], 2: [1, 3], 3: []},
            )

        self.assert_sql_count(testing.db, go, 1)

        def go():
            eq_([[c.id for c in n.cities] for n in ns], [[1, 2], [1, 3], []])

        self.assert_sql_count(testing.db, go, 0)

        # a city related to two neighbourhoods is one object
        is_(ns[0].cities[0], ns[1].cities[0])

    @testing.combinations(
        (1, 3), (2, 2), (3, 1), (10, 1), argnames="batch_size, queries"
    )
    def test_preload_batch_size(self, batch_size, queries):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()
        ns = self._neighbourhoods(s)

        def go():
            preload_spatially(
                s, ns, Neighbourhood.cities, batch_size=batch_size
            )

        self.assert_sql_count(testing.db, go, queries)
        eq_([[c.id for c in n.cities] for n in ns], [[1, 2], [1, 3], []])

    def test_preload_within(self):
        City = self.classes.City
        s = fixture_session()
        cities = s.scalars(select(City).order_by(City.id)).all()

        def go():
            preload_spatially(s, cities, City.neighbourhoods)

        self.assert_sql_count(testing.db, go, 1)
        eq_(
            [[n.id for n in c.neighbourhoods] for c in cities],
            [[1, 2], [1], [2], []],
        )

    def test_preload_skips_loaded(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()
        ns = self._neighbourhoods(s)
        ns[0].cities

        result = preload_spatially(s, ns, Neighbourhood.cities)
        eq_(set(result), {ns[1], ns[2]})

    def test_preload_populate_existing(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()
        ns = self._neighbourhoods(s)
        ns[0].cities

        result = preload_spatially(
            s, ns, Neighbourhood.cities, populate_existing=True
        )
        eq_(set(result), set(ns))
        eq_([c.id for c in ns[0].cities], [1, 2])

    def test_preload_nothing_to_load(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()

        def go():
            eq_(preload_spatially(s, [], Neighbourhood.cities), {})

        self.assert_sql_count(testing.db, go, 0)

    def test_preload_transient_owner(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()
        n = Neighbourhood(name="new", the_geom="0 0 10 10")

        def go():
            eq_(preload_spatially(s, [n], Neighbourhood.cities), {n: []})

        self.assert_sql_count(testing.db, go, 0)
        eq_(n.cities, [])

    def test_preload_by_association(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()
        ns = self._neighbourhoods(s)

        preload_spatially(s, ns, spatial_association(Neighbourhood.cities))
        eq_([c.id for c in ns[1].cities], [1, 3])

    def test_spatialload(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()
        SpatialLoader().listen_on_session(s)

        def go():
            ns = s.scalars(
                select(Neighbourhood)
                .options(spatialload(Neighbourhood.cities))
                .order_by(Neighbourhood.id)
            ).all()
            eq_([[c.id for c in n.cities] for n in ns], [[1, 2], [1, 3], []])

        self.assert_sql_count(testing.db, go, 2)

    def test_spatialload_batch_size(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()
        SpatialLoader(batch_size=2).listen_on_session(s)

        def go():
            s.scalars(
                select(Neighbourhood).options(
                    spatialload(Neighbourhood.cities, batch_size=1)
                )
            ).all()

        self.assert_sql_count(testing.db, go, 4)

    def test_loader_batch_size(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()
        SpatialLoader(batch_size=2).listen_on_session(s)

        def go():
            s.scalars(
                select(Neighbourhood).options(
                    spatialload(Neighbourhood.cities)
                )
            ).all()

        self.assert_sql_count(testing.db, go, 3)

    def test_spatialload_multiple_entities(self):
        Neighbourhood, City = self.classes("Neighbourhood", "City")
        s = fixture_session()
        SpatialLoader().listen_on_session(s)

        def go():
            rows = s.execute(
                select(Neighbourhood, City)
                .join(Neighbourhood.cities)
                .where(Neighbourhood.id == 1, City.id == 2)
                .options(
                    spatialload(Neighbourhood.cities, City.neighbourhoods)
                )
            ).all()
            eq_(len(rows), 1)
            n, c = rows[0]
            eq_([city.id for city in n.cities], [1, 2])
            eq_([nb.id for nb in c.neighbourhoods], [1])

        self.assert_sql_count(testing.db, go, 3)

    def test_spatialload_requires_loader(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()

        def go():
            ns = self._neighbourhoods(s)
            for n in ns:
                n.cities

        self.assert_sql_count(testing.db, go, 4)

    def test_remove_from_session(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()
        loader = SpatialLoader()
        loader.listen_on_session(s)
        loader.remove_from_session(s)

        def go():
            ns = s.scalars(
                select(Neighbourhood).options(
                    spatialload(Neighbourhood.cities)
                )
            ).all()
            for n in ns:
                n.cities

        self.assert_sql_count(testing.db, go, 4)

    def test_loader_logs_preloads(self):
        Neighbourhood = self.classes.Neighbourhood
        s = fixture_session()
        loader = SpatialLoader()
        loader.listen_on_session(s)

        with mock.patch.object(loader, "logger") as logger:
            s.scalars(
                select(Neighbourhood).options(
                    spatialload(Neighbourhood.cities)
                )
            ).all()

        eq_(
            logger.info.mock_calls,
            [
                mock.call(
                    "Preloading %s for %d objects",
                    spatial_association(Neighbourhood.cities),
                    3,
                )
            ],
        )

    def test_spatialload_not_spatial(self):
        Neighbourhood = self.classes.Neighbourhood

        with expect_raises_message(
            exc.ArgumentError, "is not a spatial relationship"
        ):
            spatialload(Neighbourhood.name)


class UuidKeyLoadingTest(BoxFunctionsFixture, fixtures.DeclarativeMappedTest):
    """Owners keyed on a type SQLite stores as text other than the key's
    Python string form."""

    __only_on__ = "sqlite"

    run_inserts = "once"
    run_deletes = None

    @classmethod
    def setup_classes(cls):
        Base = cls.DeclarativeBasic

        class Region(Base):
            __tablename__ = "region"

            id = Column(Uuid, primary_key=True)
            the_geom = Column(String(100))

            places = spatial_relationship(
                "Place", "contains", order_by="Place.id"
            )

        class Place(Base):
            __tablename__ = "place"

            id = Column(Integer, primary_key=True)
            the_geom = Column(String(100))

    @classmethod
    def insert_data(cls, connection):
        Region, Place = cls.classes("Region", "Place")

        s = Session(connection)
        s.add_all(
            [
                Region(id=uuid.UUID(int=1), the_geom="0 0 10 10"),
                Region(id=uuid.UUID(int=2), the_geom="5 5 20 20"),
                Region(id=uuid.UUID(int=3), the_geom="100 100 110 110"),
                Place(id=1, the_geom="6 6 8 8"),
                Place(id=2, the_geom="1 1 2 2"),
                Place(id=3, the_geom="15 15 16 16"),
            ]
        )
        s.commit()

    def _regions(self, session):
        Region = self.classes.Region
        return session.scalars(select(Region).order_by(Region.id)).all()

    def test_preload(self):
        Region = self.classes.Region
        s = fixture_session()
        regions = self._regions(s)

        def go():
            result = preload_spatially(s, regions, Region.places)
            eq_(
                {
                    region.id.int: [p.id for p in places]
                    for region, places in result.items()
                },
                {1: [1, 2], 2: [1, 3], 3: []},
            )

        self.assert_sql_count(testing.db, go, 1)

    def test_preload_batch_size(self):
        Region = self.classes.Region
        s = fixture_session()
        regions = self._regions(s)

        preload_spatially(s, regions, Region.places, batch_size=1)
        eq_(
            [[p.id for p in region.places] for region in regions],
            [[1, 2], [1, 3], []],
        )

    def test_spatialload(self):
        Region = self.classes.Region
        s = fixture_session()
        SpatialLoader().listen_on_session(s)

        def go():
            regions = s.scalars(
                select(Region)
                .options(spatialload(Region.places))
                .order_by(Region.id)
            ).all()
            eq_(
                [[p.id for p in region.places] for region in regions],
                [[1, 2], [1, 3], []],
            )

        self.assert_sql_count(testing.db, go, 2)


class PolymorphicLoadingTest(
    BoxFunctionsFixture, fixtures.DeclarativeMappedTest
):
    __only_on__ = "sqlite"

    run_inserts = "once"
    run_deletes = None

    @classmethod
    def setup_classes(cls):
        Base = cls.DeclarativeBasic

        class District(Base):
            __tablename__ = "district"

            id = Column(Integer, primary_key=True)
            the_geom = Column(String(100))

            features = spatial_relationship(
                "Feature", "contains", as_="locatable", order_by="Feature.id"
            )

        class Park(Base):
            __tablename__ = "park"

            id = Column(Integer, primary_key=True)
            the_geom = Column(String(100))

            features = spatial_relationship(
                "Feature", "contains", as_="locatable", order_by="Feature.id"
            )

        class Feature(Base):
            __tablename__ = "feature"

            id = Column(Integer, primary_key=True)
            locatable_geom = Column(String(100))
            locatable_type = Column(String(50))

    @classmethod
    def insert_data(cls, connection):
        District, Park, Feature = cls.classes("District", "Park", "Feature")

        s = Session(connection)
        s.add_all(
            [
                District(id=1, the_geom="0 0 10 10"),
                Park(id=1, the_geom="0 0 10 10"),
                Feature(
                    id=1, locatable_geom="1 1 2 2", locatable_type="District"
                ),
                Feature(id=2, locatable_geom="3 3 4 4", locatable_type="Park"),
                Feature(
                    id=3, locatable_geom="5 5 6 6", locatable_type="District"
                ),
                Feature(
                    id=4, locatable_geom="50 50 51 51", locatable_type="Park"
                ),
            ]
        )
        s.commit()

    def test_lazy_load(self):
        District, Park = self.classes("District", "Park")
        s = fixture_session()

        eq_([f.id for f in s.get(District, 1).features], [1, 3])
        eq_([f.id for f in s.get(Park, 1).features], [2])

    def test_preload(self):
        District, Park = self.classes("District", "Park")
        s = fixture_session()
        district = s.get(District, 1)
        park = s.get(Park, 1)

        preload_spatially(s, [district], District.features)
        preload_spatially(s, [park], Park.features)

        eq_([f.id for f in district.features], [1, 3])
        eq_([f.id for f in park.features], [2])

"""Parameterized aggregate queries over enumerated dimension ids."""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import structlog
from sqlalchemy import bindparam, text
from sqlalchemy.sql.elements import TextClause

from ..domain.value_objects.dimension import Dimension, DimensionSpec, resolve_dimension
from ..domain.value_objects.road_wear import RoadWearConfiguration
from ..domain.value_objects.year_configuration import YearConfiguration
from ..errors import InvalidFilterError, UnknownValue, ValidationError
from ..infrastructure.repositories.row_store import RowStore
from ..models import (
    FilterConfiguration, MetricKind, MetricSpec, ResultPoint, ResultSet, RoadWearMode
)
from ..services.enumerator import DimensionEnumerator
from ..services.regularization_engine import RegularizationEngine
from ..utils.logging import query_logger

logger = structlog.get_logger()

AGE_EXPRESSION = "(year - model_year)"

# Numeric fields available to sum/average/minimum/maximum/coverage
NUMERIC_FIELDS: Dict[str, str] = {
    "net_mass": "net_mass",
    "displacement": "displacement",
    "cylinder_count": "cylinder_count",
    "model_year": "model_year",
    "axle_count": "max_axles",
    "vehicle_age": AGE_EXPRESSION,
}

AGGREGATES: Dict[MetricKind, str] = {
    MetricKind.SUM: "SUM",
    MetricKind.AVERAGE: "AVG",
    MetricKind.MINIMUM: "MIN",
    MetricKind.MAXIMUM: "MAX",
}


@dataclass(frozen=True)
class BuiltQuery:
    """A ready-to-run statement plus the text it was rendered from."""

    statement: TextClause
    params: Dict[str, Any]
    sql: str
    dimensions: Tuple[str, ...] = ()
    denominator: Optional["BuiltQuery"] = None


@dataclass
class _Predicates:
    conditions: List[str] = field(default_factory=list)
    params: Dict[str, Any] = field(default_factory=dict)
    expanding: Set[str] = field(default_factory=set)
    dimensions: List[str] = field(default_factory=list)

    def add_in(self, column: str, name: str, values: List[Any]) -> None:
        self.conditions.append(f"{column} IN :{name}")
        self.params[name] = values
        self.expanding.add(name)


class OptimizedQueryBuilder:
    """
    Turns a FilterConfiguration and a metric into a GROUP BY year query.

    Categorical constraints become IN predicates over integer id columns
    bound as expanding parameters. Column names come only from the
    dimension registry and the numeric field table above.
    """

    def __init__(self,
                 row_store: RowStore,
                 enumerator: DimensionEnumerator,
                 regularization_engine: RegularizationEngine,
                 year_config: Callable[[], YearConfiguration],
                 road_wear: Optional[RoadWearConfiguration] = None):
        self.row_store = row_store
        self.enumerator = enumerator
        self.regularization_engine = regularization_engine
        self._year_config = year_config
        self.road_wear = road_wear or RoadWearConfiguration()

    async def build_and_run(self, filter_config: FilterConfiguration, metric: MetricSpec) -> ResultSet:
        start_time = time.time()
        built = await self.build(filter_config, metric)

        rows = await self.row_store.execute(built.statement)
        values = {int(key): float(value) if value is not None else 0.0 for key, value in rows}

        if built.denominator is not None:
            denominators = {
                int(key): float(value or 0)
                for key, value in await self.row_store.execute(built.denominator.statement)
            }
            values = {
                year: (numerator * 100.0 / denominators[year]) if denominators.get(year) else 0.0
                for year, numerator in values.items()
            }

        points = [ResultPoint(key=year, value=value) for year, value in sorted(values.items())]
        if filter_config.normalize_to_first_year:
            points = normalize_to_first_year(points)
        if filter_config.cumulative_sum:
            points = cumulative_sum(points)

        elapsed_ms = (time.time() - start_time) * 1000
        query_logger.log_query(metric.kind.value, list(built.dimensions), len(points), elapsed_ms)
        return ResultSet(metric=metric.kind, points=points, sql=built.sql, elapsed_ms=elapsed_ms)

    async def build(self, filter_config: FilterConfiguration, metric: MetricSpec) -> BuiltQuery:
        """Validate the filter and render the statement(s). Nothing is executed."""
        self._validate_metric(metric)
        predicates = await self._build_predicates(filter_config)
        select_expression, metric_conditions, metric_params = await self._metric_expression(metric)

        numerator = self._render(
            select_expression, predicates, metric_conditions, metric_params
        )

        if metric.kind != MetricKind.PERCENTAGE:
            return numerator

        base = resolve_dimension(metric.percentage_base_dimension).name
        relaxed_config = filter_config.model_copy(update={
            "selections": {
                name: ids for name, ids in filter_config.selections.items()
                if resolve_dimension(name).name != base
            }
        })
        # Make/model widening is coupled, relax both when either is the base
        if base in (Dimension.MAKE.value, Dimension.MODEL.value) and filter_config.apply_regularization:
            relaxed_config.selections.pop(Dimension.MAKE.value, None)
            relaxed_config.selections.pop(Dimension.MODEL.value, None)
        denominator_predicates = await self._build_predicates(relaxed_config)
        denominator = self._render("COUNT(*)", denominator_predicates, [], {})

        return BuiltQuery(
            statement=numerator.statement,
            params=numerator.params,
            sql=numerator.sql,
            dimensions=numerator.dimensions,
            denominator=denominator,
        )

    # --- validation ---

    def _validate_metric(self, metric: MetricSpec) -> None:
        if metric.kind in AGGREGATES and metric.field not in NUMERIC_FIELDS:
            raise ValidationError(f"Metric {metric.kind.value} needs one of {sorted(NUMERIC_FIELDS)}, got {metric.field!r}")
        if metric.kind == MetricKind.COVERAGE and metric.coverage_field not in NUMERIC_FIELDS:
            raise ValidationError(f"Coverage needs one of {sorted(NUMERIC_FIELDS)}, got {metric.coverage_field!r}")
        if metric.kind == MetricKind.PERCENTAGE:
            if not metric.percentage_base_dimension:
                raise ValidationError("Percentage metric needs a base dimension to relax")
            try:
                resolve_dimension(metric.percentage_base_dimension)
            except UnknownValue:
                raise InvalidFilterError(
                    f"Unknown dimension: {metric.percentage_base_dimension}",
                    dimension=metric.percentage_base_dimension,
                ) from None

    async def _resolve_selection(self, name: str, ids: List[int]) -> Tuple[DimensionSpec, List[int]]:
        try:
            spec = resolve_dimension(name)
        except UnknownValue:
            query_logger.log_query_rejected("unknown dimension", name)
            raise InvalidFilterError(f"Unknown dimension: {name}", dimension=name) from None

        table = await self.enumerator.load_table(spec.dimension)
        if len(table) == 0:
            query_logger.log_query_rejected("dimension has no enumerated values", spec.name)
            raise InvalidFilterError(f"Dimension {spec.name} has no enumerated values", dimension=spec.name)

        unknown = sorted(set(ids) - set(table.by_id))
        if unknown:
            query_logger.log_query_rejected("unknown ids", spec.name)
            raise InvalidFilterError(f"Unknown {spec.name} ids: {unknown}", dimension=spec.name)
        return spec, sorted(set(ids))

    # --- predicates ---

    async def _build_predicates(self, filter_config: FilterConfiguration) -> _Predicates:
        predicates = _Predicates()
        selected: Dict[str, Tuple[DimensionSpec, List[int]]] = {}

        for name, ids in filter_config.selections.items():
            spec, valid_ids = await self._resolve_selection(name, ids)
            # an empty selection does not constrain
            if valid_ids:
                selected[spec.name] = (spec, valid_ids)

        # Mappings only cover uncurated years, curated-only queries are never widened
        if filter_config.apply_regularization and not filter_config.limit_to_curated_years:
            make_ids = selected.get(Dimension.MAKE.value, (None, []))[1]
            model_ids = selected.get(Dimension.MODEL.value, (None, []))[1]
            expanded_makes: Set[int] = set(make_ids)
            expanded_models: Set[int] = set(model_ids)
            if make_ids:
                expanded_makes = await self.regularization_engine.expand_make_ids(make_ids)
            if model_ids:
                expanded_makes, expanded_models = await self.regularization_engine.expand_make_model_ids(
                    expanded_makes, model_ids, coupling=filter_config.regularization_coupling
                )
            # widening never adds a predicate the selection did not have
            if make_ids:
                selected[Dimension.MAKE.value] = (resolve_dimension(Dimension.MAKE), sorted(expanded_makes))
            if model_ids:
                selected[Dimension.MODEL.value] = (resolve_dimension(Dimension.MODEL), sorted(expanded_models))

        for name in sorted(selected):
            spec, ids = selected[name]
            predicates.add_in(spec.id_column, f"{spec.name}_ids", ids)
            predicates.dimensions.append(spec.name)

        if filter_config.limit_to_curated_years:
            curated_years = sorted(self._year_config().curated_years)
            if not curated_years:
                raise InvalidFilterError("No curated years configured", dimension=Dimension.YEAR.value)
            predicates.add_in("year", "curated_years", curated_years)

        if filter_config.age_ranges:
            range_conditions = []
            for index, age_range in enumerate(filter_config.age_ranges):
                if age_range.max_age is not None and age_range.min_age > age_range.max_age:
                    raise ValidationError(
                        f"Age range lower bound {age_range.min_age} is above upper bound {age_range.max_age}"
                    )
                predicates.params[f"age_min_{index}"] = age_range.min_age
                if age_range.max_age is None:
                    range_conditions.append(f"{AGE_EXPRESSION} >= :age_min_{index}")
                else:
                    predicates.params[f"age_max_{index}"] = age_range.max_age
                    range_conditions.append(f"{AGE_EXPRESSION} BETWEEN :age_min_{index} AND :age_max_{index}")
            predicates.conditions.append("model_year IS NOT NULL")
            predicates.conditions.append("(" + " OR ".join(range_conditions) + ")")
            predicates.dimensions.append("age")

        return predicates

    # --- metrics ---

    async def _metric_expression(self, metric: MetricSpec) -> Tuple[str, List[str], Dict[str, Any]]:
        """SELECT expression, extra conditions and extra params for a metric."""
        if metric.kind in (MetricKind.COUNT, MetricKind.PERCENTAGE):
            return "COUNT(*)", [], {}

        if metric.kind in AGGREGATES:
            column = NUMERIC_FIELDS[metric.field]
            return f"{AGGREGATES[metric.kind]}({column})", [f"{column} IS NOT NULL"], {}

        if metric.kind == MetricKind.COVERAGE:
            column = NUMERIC_FIELDS[metric.coverage_field]
            if metric.coverage_as_percentage:
                return f"100.0 * COUNT({column}) / COUNT(*)", [], {}
            return f"COUNT(*) - COUNT({column})", [], {}

        if metric.kind == MetricKind.ROAD_WEAR_INDEX:
            coefficient, params = await self._road_wear_coefficient()
            # net_mass^4 written out, SQLite may lack POWER()
            expression = f"({coefficient}) * net_mass * net_mass * net_mass * net_mass"
            aggregate = "SUM" if metric.road_wear_mode == RoadWearMode.SUM else "AVG"
            return f"{aggregate}({expression})", ["net_mass IS NOT NULL"], params

        raise ValidationError(f"Unsupported metric: {metric.kind}")

    async def _road_wear_coefficient(self) -> Tuple[str, Dict[str, Any]]:
        """CASE expression choosing the fourth power coefficient per row."""
        config = self.road_wear
        params: Dict[str, Any] = {}
        branches = []

        max_bucket = config.max_bucket
        for axles in sorted(config.coefficients):
            params[f"rwi_axle_{axles}"] = config.coefficients[axles]
            if axles == max_bucket:
                branches.append(f"WHEN max_axles >= {int(axles)} THEN :rwi_axle_{axles}")
            else:
                branches.append(f"WHEN max_axles = {int(axles)} THEN :rwi_axle_{axles}")

        table = await self.enumerator.load_table(Dimension.VEHICLE_TYPE)
        for index, (code, coefficient) in enumerate(sorted(config.vehicle_type_fallbacks.items())):
            type_id = table.by_text.get(code)
            if type_id is None:
                continue
            params[f"rwi_type_id_{index}"] = type_id
            params[f"rwi_type_{index}"] = coefficient
            branches.append(
                f"WHEN max_axles IS NULL AND vehicle_type_id = :rwi_type_id_{index} THEN :rwi_type_{index}"
            )

        params["rwi_default"] = config.default_coefficient
        return "CASE " + " ".join(branches) + " ELSE :rwi_default END", params

    # --- rendering ---

    def _render(self,
                select_expression: str,
                predicates: _Predicates,
                metric_conditions: List[str],
                metric_params: Dict[str, Any]) -> BuiltQuery:
        conditions = predicates.conditions + metric_conditions
        where_clause = " AND ".join(conditions) if conditions else "1 = 1"
        sql = (
            f"SELECT year AS year_key, {select_expression} AS metric_value "
            f"FROM vehicles WHERE {where_clause} "
            f"GROUP BY year ORDER BY year"
        )
        params = {**predicates.params, **metric_params}
        statement = text(sql).bindparams(
            *[bindparam(name, expanding=True) for name in sorted(predicates.expanding)]
        ).bindparams(**{name: value for name, value in params.items()})

        return BuiltQuery(
            statement=statement,
            params=params,
            sql=sql,
            dimensions=tuple(predicates.dimensions),
        )


def normalize_to_first_year(points: List[ResultPoint]) -> List[ResultPoint]:
    """Divide every value by the first point's value. A zero first value leaves the series unchanged."""
    if not points or points[0].value == 0:
        return points
    base = points[0].value
    return [ResultPoint(key=point.key, value=point.value / base) for point in points]


def cumulative_sum(points: List[ResultPoint]) -> List[ResultPoint]:
    total = 0.0
    result = []
    for point in points:
        total += point.value
        result.append(ResultPoint(key=point.key, value=total))
    return result

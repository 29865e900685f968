import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple, Union

from postgrest.exceptions import APIError
from pydantic import ValidationError

from .errors import CatalogError, InvalidFilter, NotFound, RemoteQueryFailed
from .readiness import ReadinessGate
from .schemas import DEFAULT_PAGE_SIZE, DEFAULT_STATUS, FilterRequest, Result, SortKey
from .supabase_client import AGENTS_TABLE, INQUIRIES_TABLE, PROPERTIES_TABLE

logger = logging.getLogger(__name__)

SEARCH_COLUMNS = ("title", "description", "location", "district")
INQUIRY_COLUMNS = "*, properties(title, price, location)"

# PostgREST code for "single row expected, got 0 (or many)"
NO_SINGLE_ROW = "PGRST116"


def _like_escape(term: str) -> str:
    """Make `%` and `_` in a search term literal inside a LIKE pattern."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _quote(value: Any) -> str:
    """Render a value for an `or=(...)` filter: double-quoted, reserved chars escaped."""
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


@dataclass(frozen=True)
class Predicate:
    op: str        # eq, neq, gte, lte, ilike
    column: str
    value: Any

    def render(self) -> str:
        return f"{self.column}.{self.op}.{_quote(self.value)}"


@dataclass(frozen=True)
class AnyOf:
    predicates: Tuple[Predicate, ...]

    def render(self) -> str:
        return ",".join(p.render() for p in self.predicates)


Clause = Union[Predicate, AnyOf]


@dataclass(frozen=True)
class ComposedQuery:
    table: str
    columns: str = "*"
    clauses: Tuple[Clause, ...] = ()
    order: Optional[SortKey] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    single: bool = False
    count: Optional[str] = None

    @property
    def range(self) -> Optional[Tuple[int, int]]:
        if self.offset is None:
            return None
        return self.offset, self.offset + self.limit - 1

    def predicates(self):
        """Flattened predicates, handy for inspection."""
        for clause in self.clauses:
            if isinstance(clause, AnyOf):
                yield from clause.predicates
            else:
                yield clause

    def apply(self, client):
        """Replay the composed query onto a supabase query builder."""
        if self.count:
            query = client.table(self.table).select(self.columns, count=self.count)
        else:
            query = client.table(self.table).select(self.columns)
        for clause in self.clauses:
            if isinstance(clause, AnyOf):
                query = query.or_(clause.render())
            else:
                query = getattr(query, clause.op)(clause.column, clause.value)
        if self.order is not None:
            query = query.order(self.order.column, desc=not self.order.ascending)
        if self.range is not None:
            query = query.range(*self.range)
        elif self.limit is not None:
            query = query.limit(self.limit)
        if self.single:
            query = query.single()
        return query


def compose(filters: Union[FilterRequest, Mapping[str, Any], None]) -> ComposedQuery:
    """Translate a catalog search into predicates. Order of clauses is fixed."""
    if not isinstance(filters, FilterRequest):
        try:
            filters = FilterRequest.model_validate(dict(filters or {}))
        except ValidationError as e:
            raise InvalidFilter(str(e)) from e

    if filters.offset is not None and filters.limit is None:
        raise InvalidFilter("offset requires limit")

    clauses = [Predicate("eq", "status", filters.status or DEFAULT_STATUS)]

    if filters.property_type:
        clauses.append(Predicate("eq", "property_type", filters.property_type))
    if filters.district:
        clauses.append(Predicate("eq", "district", filters.district))
    if filters.bedrooms is not None:
        if filters.min_bedrooms is not None:
            clauses.append(Predicate("gte", "bedrooms", filters.min_bedrooms))
        else:
            clauses.append(Predicate("eq", "bedrooms", filters.bedrooms))

    if filters.min_price is not None:
        clauses.append(Predicate("gte", "price", filters.min_price))
    if filters.max_price is not None:
        clauses.append(Predicate("lte", "price", filters.max_price))
    if filters.min_area is not None:
        clauses.append(Predicate("gte", "area", filters.min_area))

    if filters.search:
        pattern = f"%{_like_escape(filters.search)}%"
        clauses.append(AnyOf(tuple(Predicate("ilike", col, pattern) for col in SEARCH_COLUMNS)))

    limit = filters.limit
    if limit is None and filters.offset is None:
        limit = DEFAULT_PAGE_SIZE

    return ComposedQuery(
        table=PROPERTIES_TABLE,
        clauses=tuple(clauses),
        order=filters.sort,
        limit=limit,
        offset=filters.offset,
    )


def ok(data: Any = None) -> Result:
    return Result(success=True, data=data)


def fail(err: CatalogError) -> Result:
    return Result(success=False, error=err.message, code=err.code)


class QueryBuilder:
    """
    Read side of the catalog. Every method resolves to a `Result`;
    only `BackendUnavailable` escapes, since it means mis-configuration.
    """

    def __init__(self, gate: ReadinessGate):
        self.gate = gate

    async def execute(self, query: ComposedQuery):
        client = await self.gate.wait_for_ready()
        try:
            return await query.apply(client).execute()
        except APIError as e:
            if query.single and e.code == NO_SINGLE_ROW:
                raise NotFound(f"No row in {query.table} matched") from e
            logger.error("Query on %s failed: %s", query.table, e.message)
            raise RemoteQueryFailed(e.message or str(e)) from e
        except CatalogError:
            raise
        except Exception as e:
            logger.error("Query on %s failed: %s", query.table, e)
            raise RemoteQueryFailed(str(e)) from e

    async def _run(self, query: ComposedQuery) -> Result:
        try:
            response = await self.execute(query)
        except (InvalidFilter, NotFound, RemoteQueryFailed) as e:
            return fail(e)
        return ok(response.data)

    async def build_and_execute(self, filters: Union[FilterRequest, Mapping[str, Any], None] = None) -> Result:
        try:
            query = compose(filters)
        except InvalidFilter as e:
            return fail(e)
        result = await self._run(query)
        if result.success:
            logger.info("%d properties found", len(result.data or []))
        return result

    async def get_by_id(self, property_id: Any) -> Result:
        query = ComposedQuery(
            table=PROPERTIES_TABLE,
            clauses=(Predicate("eq", "id", property_id),),
            single=True,
        )
        result = await self._run(query)
        if result.code == NotFound.code:
            result.error = f"Propiedad {property_id} no encontrada"
        return result

    async def get_featured(self, limit: int = 6) -> Result:
        query = ComposedQuery(
            table=PROPERTIES_TABLE,
            clauses=(
                Predicate("eq", "featured", True),
                Predicate("eq", "status", DEFAULT_STATUS),
            ),
            order=SortKey(),
            limit=limit,
        )
        return await self._run(query)

    async def get_similar(
        self,
        exclude_id: Any,
        property_type: Optional[str] = None,
        district: Optional[str] = None,
        limit: int = 3,
    ) -> Result:
        alternatives = []
        if property_type:
            alternatives.append(Predicate("eq", "property_type", property_type))
        if district:
            alternatives.append(Predicate("eq", "district", district))
        if not alternatives:
            return ok([])

        query = ComposedQuery(
            table=PROPERTIES_TABLE,
            clauses=(
                Predicate("eq", "status", DEFAULT_STATUS),
                Predicate("neq", "id", exclude_id),
                AnyOf(tuple(alternatives)),
            ),
            order=SortKey(),
            limit=limit,
        )
        return await self._run(query)

    async def get_inquiries(self, status: Optional[str] = None, property_id: Any = None) -> Result:
        clauses = []
        if status:
            clauses.append(Predicate("eq", "status", status))
        if property_id is not None:
            clauses.append(Predicate("eq", "property_id", property_id))
        query = ComposedQuery(
            table=INQUIRIES_TABLE,
            columns=INQUIRY_COLUMNS,
            clauses=tuple(clauses),
            order=SortKey(),
        )
        return await self._run(query)

    async def get_agent(self, agent_id: Any) -> Result:
        query = ComposedQuery(
            table=AGENTS_TABLE,
            clauses=(Predicate("eq", "id", agent_id),),
            single=True,
        )
        result = await self._run(query)
        if result.code == NotFound.code:
            result.error = f"Agente {agent_id} no encontrado"
        return result

    async def count(self, table: str, *clauses: Clause) -> int:
        query = ComposedQuery(table=table, columns="id", clauses=clauses, count="exact", limit=1)
        response = await self.execute(query)
        return response.count or 0

    async def get_stats(self) -> Result:
        try:
            total_properties = await self.count(PROPERTIES_TABLE, Predicate("eq", "status", DEFAULT_STATUS))
            total_inquiries = await self.count(INQUIRIES_TABLE)
        except RemoteQueryFailed as e:
            return fail(e)
        return ok({"totalProperties": total_properties, "totalInquiries": total_inquiries})

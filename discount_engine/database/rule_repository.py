# discount_engine/database/rule_repository.py
import asyncio
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
import asyncpg
from ..exceptions import DuplicateCodeError, RepositoryUnavailableError, RuleNotFoundError
from ..models.discount import (
    DiscountRule, DiscountRuleCreate, RuleFilters, RulePage, RuleSort, parse_rule
)
from ..utils.clock import now as system_now
from ..utils.money import ZERO

logger = logging.getLogger(__name__)

WRITABLE_COLUMNS = (
    'code', 'name', 'description', 'discount_type', 'discount_value',
    'buy_quantity', 'get_quantity', 'applies_to',
    'product_ids', 'category_ids', 'customer_ids', 'customer_classifications',
    'min_order_amount', 'min_quantity', 'max_discount_amount',
    'start_date', 'end_date', 'usage_limit', 'usage_per_customer',
    'priority', 'is_combinable', 'is_active',
)

SORT_COLUMNS = {
    'name': 'name',
    'code': 'code',
    'priority': 'priority',
    'start_date': 'start_date',
    'end_date': 'end_date',
    'created_at': 'created_at',
    'current_usage': 'current_usage',
}

UNAVAILABLE_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.SerializationError,
)

# Connection of the transaction() block currently running in this task, if any
_tx_connection: ContextVar[Optional[asyncpg.Connection]] = ContextVar('rule_repository_tx', default=None)


class _CapReached(Exception):
    """Rolls back a redemption whose per-customer cap was hit"""


class PostgresRuleRepository:
    """Discount rule storage on PostgreSQL through the shared asyncpg pool"""

    def __init__(self, db):
        self.db = db

    async def get(self, rule_id: int) -> Optional[DiscountRule]:
        async with self._connection() as conn:
            row = await conn.fetchrow("SELECT * FROM discount_rules WHERE id = $1", rule_id)
            return parse_rule(row) if row else None

    async def get_by_code(self, code: str) -> Optional[DiscountRule]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM discount_rules WHERE UPPER(code) = UPPER($1)", code.strip()
            )
            return parse_rule(row) if row else None

    async def list_rules(self, filters: Optional[RuleFilters] = None, sort: Optional[RuleSort] = None,
                         page: int = 1, page_size: int = 20) -> RulePage:
        """Filtered, sorted page of rules"""
        where, params = self._build_filters(filters or RuleFilters())
        sort = sort or RuleSort()
        direction = "DESC" if sort.descending else "ASC"
        order_by = f"{SORT_COLUMNS[sort.field]} {direction} NULLS LAST, id ASC"
        page = max(page, 1)

        async with self._connection() as conn:
            total = await conn.fetchval(f"SELECT COUNT(*) FROM discount_rules {where}", *params)
            rows = await conn.fetch(f"""
                SELECT *
                FROM discount_rules
                {where}
                ORDER BY {order_by}
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
            """, *params, page_size, (page - 1) * page_size)

        return RulePage(
            items=[parse_rule(row) for row in rows],
            current_page=page,
            per_page=page_size,
            total=total,
        )

    async def create(self, data: DiscountRuleCreate) -> DiscountRule:
        record = data.to_record()
        columns = ", ".join(WRITABLE_COLUMNS)
        placeholders = ", ".join(f"${i}" for i in range(1, len(WRITABLE_COLUMNS) + 1))
        try:
            async with self._connection() as conn:
                row = await conn.fetchrow(f"""
                    INSERT INTO discount_rules ({columns})
                    VALUES ({placeholders})
                    RETURNING *
                """, *[record[column] for column in WRITABLE_COLUMNS])
        except asyncpg.exceptions.UniqueViolationError as e:
            raise DuplicateCodeError(data.code) from e
        return parse_rule(row)

    async def update(self, rule_id: int, data: DiscountRuleCreate) -> DiscountRule:
        record = data.to_record()
        assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(WRITABLE_COLUMNS, start=1))
        try:
            async with self._connection() as conn:
                row = await conn.fetchrow(f"""
                    UPDATE discount_rules
                    SET {assignments}, updated_at = NOW()
                    WHERE id = ${len(WRITABLE_COLUMNS) + 1}
                    RETURNING *
                """, *[record[column] for column in WRITABLE_COLUMNS], rule_id)
        except asyncpg.exceptions.UniqueViolationError as e:
            raise DuplicateCodeError(data.code) from e
        if row is None:
            raise RuleNotFoundError(rule_id)
        return parse_rule(row)

    async def delete(self, rule_id: int) -> bool:
        async with self._connection() as conn:
            result = await conn.execute("DELETE FROM discount_rules WHERE id = $1", rule_id)
            return result == "DELETE 1"

    async def has_redemptions(self, rule_id: int) -> bool:
        async with self._connection() as conn:
            return await conn.fetchval(
                "SELECT EXISTS (SELECT 1 FROM discount_redemptions WHERE rule_id = $1)", rule_id
            )

    async def get_customer_usage(self, customer_id: Optional[int], rule_ids: Sequence[int]) -> Dict[int, int]:
        if customer_id is None or not rule_ids:
            return {}
        async with self._connection() as conn:
            rows = await conn.fetch("""
                SELECT rule_id, usage_count
                FROM discount_rule_customer_usage
                WHERE customer_id = $1 AND rule_id = ANY($2::bigint[])
            """, customer_id, list(rule_ids))
            return {row['rule_id']: row['usage_count'] for row in rows}

    async def increment_usage(self, rule_id: int, customer_id: Optional[int] = None,
                              order_id: Optional[int] = None, amount: Decimal = ZERO) -> bool:
        """
        Record one redemption. The global counter is bumped by a conditional UPDATE, which
        also row-locks the rule so the per-customer check below cannot race with another
        redemption of the same rule.
        """
        try:
            async with self._connection() as conn:
                async with conn.transaction():
                    per_customer = await conn.fetchrow("""
                        UPDATE discount_rules
                        SET current_usage = current_usage + 1
                        WHERE id = $1
                        AND (usage_limit IS NULL OR current_usage < usage_limit)
                        RETURNING usage_per_customer
                    """, rule_id)
                    if per_customer is None:
                        return False

                    if customer_id is not None:
                        counted = await conn.fetchval("""
                            INSERT INTO discount_rule_customer_usage (rule_id, customer_id, usage_count)
                            VALUES ($1, $2, 1)
                            ON CONFLICT (rule_id, customer_id)
                            DO UPDATE SET usage_count = discount_rule_customer_usage.usage_count + 1
                            WHERE $3::integer IS NULL
                            OR discount_rule_customer_usage.usage_count < $3::integer
                            RETURNING usage_count
                        """, rule_id, customer_id, per_customer['usage_per_customer'])
                        if counted is None:
                            raise _CapReached()

                    await conn.execute("""
                        INSERT INTO discount_redemptions (
                            rule_id, customer_id, order_id, amount
                        ) VALUES ($1, $2, $3, $4)
                    """, rule_id, customer_id, order_id, amount)
                    return True
        except _CapReached:
            return False

    async def get_usage_stats(self, rule_id: int) -> Dict[str, Any]:
        async with self._connection() as conn:
            stats = await conn.fetchrow("""
                SELECT
                    COUNT(*) AS total_redemptions,
                    COUNT(DISTINCT customer_id) AS unique_customers,
                    COALESCE(SUM(amount), 0) AS total_discount_amount
                FROM discount_redemptions
                WHERE rule_id = $1
            """, rule_id)
            return dict(stats)

    @asynccontextmanager
    async def transaction(self):
        """Everything done through this repository inside the block commits or rolls back together"""
        async with self._connection() as conn:
            async with conn.transaction():
                token = _tx_connection.set(conn)
                try:
                    yield
                finally:
                    _tx_connection.reset(token)

    @asynccontextmanager
    async def _connection(self):
        conn = _tx_connection.get()
        if conn is None and self.db.pool is None:
            raise RepositoryUnavailableError("Database is not connected")
        try:
            if conn is not None:
                yield conn
            else:
                async with self.db.pool.acquire() as conn:
                    yield conn
        except UNAVAILABLE_ERRORS as e:
            logger.error(f"Discount rule store unavailable: {e}")
            raise RepositoryUnavailableError(str(e)) from e

    @staticmethod
    def _build_filters(filters: RuleFilters) -> Tuple[str, List[Any]]:
        clauses = []
        params: List[Any] = []

        def param(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if filters.search:
            like = param(f"%{filters.search}%")
            clauses.append(f"(name ILIKE {like} OR code ILIKE {like} OR description ILIKE {like})")
        if filters.discount_type is not None:
            clauses.append(f"discount_type = {param(filters.discount_type.value)}")
        if filters.applies_to is not None:
            clauses.append(f"applies_to = {param(filters.applies_to.value)}")
        if filters.is_active is not None:
            clauses.append(f"is_active = {param(filters.is_active)}")
        if filters.code is not None:
            clauses.append(f"UPPER(code) = UPPER({param(filters.code.strip())})")
        if filters.valid_only:
            at = param(filters.valid_at or system_now())
            clauses.append(
                f"is_active AND (start_date IS NULL OR start_date <= {at}) "
                f"AND (end_date IS NULL OR end_date >= {at}) "
                f"AND (usage_limit IS NULL OR current_usage < usage_limit)"
            )

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

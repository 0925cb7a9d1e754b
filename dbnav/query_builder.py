from dataclasses import dataclass, replace

OPERATORS = (
    "=",
    "!=",
    ">",
    "<",
    ">=",
    "<=",
    "LIKE",
    "ILIKE",
    "IN",
    "IS NULL",
    "IS NOT NULL",
)

_UNARY_OPERATORS = frozenset({"IS NULL", "IS NOT NULL"})


@dataclass(frozen=True)
class WhereCondition:
    column: str
    operator: str
    value: str = ""


@dataclass(frozen=True)
class TableSource:
    schema: str
    table: str
    where_sql: str = ""
    limit: int = 50
    offset: int = 0

    def page(self, offset: int) -> "TableSource":
        return replace(self, offset=max(0, offset))


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def qualified_table(schema: str, table: str) -> str:
    return f"{quote_identifier(schema)}.{quote_identifier(table)}"


def build_condition(condition: WhereCondition) -> str:
    if condition.operator not in OPERATORS:
        raise ValueError(f"Unknown operator: {condition.operator}")
    column_sql = quote_identifier(condition.column)
    if condition.operator in _UNARY_OPERATORS:
        return f"{column_sql} {condition.operator}"
    if condition.operator == "IN":
        items = [item.strip() for item in condition.value.split(",") if item.strip()]
        if not items:
            raise ValueError("IN requires at least one value.")
        values_sql = ", ".join(quote_literal(item) for item in items)
        return f"{column_sql} IN ({values_sql})"
    return f"{column_sql} {condition.operator} {quote_literal(condition.value)}"


def build_where_clause(conditions: list[WhereCondition]) -> str:
    return " AND ".join(build_condition(condition) for condition in conditions)


def build_table_query(source: TableSource) -> str:
    where_sql = f" WHERE {source.where_sql}" if source.where_sql else ""
    # One extra row tells the results view whether another page exists.
    return (
        f"SELECT * FROM {qualified_table(source.schema, source.table)}{where_sql}"
        f" LIMIT {source.limit + 1} OFFSET {source.offset}"
    )

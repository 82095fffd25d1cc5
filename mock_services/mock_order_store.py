"""
mock_order_store.py — Mock Implementation of the Order Store (REST API)

This module provides a simulated Order Store for local runs and integration tests.
It exposes a FastAPI application that mimics the subset of the hosted database's
PostgREST dialect used by the lifecycle service, backed by in-memory tables.

Supported query syntax:
    • Filters: column=eq.value, column=gte.value, column=lte.value, column=ilike.*term*
    • Disjunction: or=(column.op.value,column.op."quoted, value")
    • Sorting: order=column.asc|desc
    • `select` is accepted and ignored; orders always embed their order_items

Endpoints:
    GET   /rest/v1/{table} — Returns the matching rows.
    POST  /rest/v1/{table} — Inserts one row or a list of rows.
    PATCH /rest/v1/{table} — Updates the matching rows (returns them with Prefer: return=representation).
                             Rejects unknown delivery_rider_id values like a foreign key would (HTTP 409).

Port:
    Default: 8002 (HTTP)
"""

import copy
import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Union

from fastapi import Body, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse

app = FastAPI(title="Mock Order Store")
log = logging.getLogger(__name__)

TABLE_NAMES = ("orders", "order_items", "users", "restaurants", "location_travel_times")
TABLES: Dict[str, List[dict]] = {name: [] for name in TABLE_NAMES}
RESERVED_PARAMS = {"select", "order", "or"}
DISJUNCTION_TERM = re.compile(r'(\w+)\.(\w+)\.("(?:[^"\\]|\\.)*"|[^,]*)')


def reset_tables():
    """Empties every table."""
    for rows in TABLES.values():
        rows.clear()


def insert_rows(table: str, rows: List[dict]) -> List[dict]:
    """Inserts rows into a table, generating ids for rows that have none."""
    inserted = []
    for row in rows:
        row = dict(row)
        row.setdefault("id", str(uuid.uuid4()))
        TABLES[table].append(row)
        inserted.append(row)
    return inserted


def _coerce(value):
    """Converts ISO timestamps and numeric strings for range comparisons and sorting."""
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
        else:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        try:
            return float(value)
        except ValueError:
            return value
    return value


def _matches(row: dict, column: str, expression: str) -> bool:
    op, _, expected = expression.partition(".")
    current = row.get(column)
    if op == "eq":
        return current is not None and str(current) == expected
    if current is None:
        return False
    if op == "gte":
        return _coerce(current) >= _coerce(expected)
    if op == "lte":
        return _coerce(current) <= _coerce(expected)
    if op == "ilike":
        return expected.strip("*").lower() in str(current).lower()
    raise HTTPException(status_code=400, detail={"message": f"Unsupported operator '{op}'"})


def _parse_disjunction(disjunction: str) -> List[tuple]:
    """Splits `(col.op.value,col.op."quoted, value")` into (column, expression) pairs."""
    terms = []
    for column, op, value in DISJUNCTION_TERM.findall(disjunction.strip("()")):
        if value.startswith('"'):
            value = re.sub(r"\\(.)", r"\1", value[1:-1])
        terms.append((column, f"{op}.{value}"))
    return terms


def _matches_any(row: dict, disjunction: str) -> bool:
    return any(_matches(row, column, expression) for column, expression in _parse_disjunction(disjunction))


def select_rows(table: str, request: Request) -> List[dict]:
    """Returns the rows of `table` that satisfy every filter in the query string."""
    if table not in TABLES:
        raise HTTPException(status_code=404, detail={"message": f"relation '{table}' does not exist"})

    rows = TABLES[table]
    for key, expression in request.query_params.multi_items():
        if key in RESERVED_PARAMS:
            continue
        rows = [row for row in rows if _matches(row, key, expression)]

    disjunction = request.query_params.get("or")
    if disjunction:
        rows = [row for row in rows if _matches_any(row, disjunction)]

    ordering = request.query_params.get("order")
    if ordering:
        column, _, direction = ordering.partition(".")
        present = [row for row in rows if row.get(column) is not None]
        missing = [row for row in rows if row.get(column) is None]
        present.sort(key=lambda row: _coerce(row[column]), reverse=direction == "desc")
        rows = present + missing
    return rows


def _represent(table: str, rows: List[dict]) -> List[dict]:
    result = copy.deepcopy(rows)
    if table == "orders":
        for row in result:
            row["order_items"] = [dict(item) for item in TABLES["order_items"] if item.get("order_id") == row["id"]]
    return result


@app.get("/rest/v1/{table}")
def read_rows(table: str, request: Request):
    return _represent(table, select_rows(table, request))


@app.post("/rest/v1/{table}", status_code=201)
def create_rows(table: str, payload: Union[dict, List[dict]] = Body(...)):
    if table not in TABLES:
        raise HTTPException(status_code=404, detail={"message": f"relation '{table}' does not exist"})
    rows = payload if isinstance(payload, list) else [payload]
    return _represent(table, insert_rows(table, rows))


@app.patch("/rest/v1/{table}")
def update_rows(table: str, request: Request, fields: dict = Body(...),
                prefer: str = Header("", alias="Prefer")):
    """
    Applies `fields` to every matching row.

    An update that matches no rows is not an error: the response is simply an
    empty list, exactly like the hosted database.
    """
    rider_id = fields.get("delivery_rider_id")
    if table == "orders" and rider_id and not any(user["id"] == rider_id for user in TABLES["users"]):
        return JSONResponse(status_code=409, content={
            "code": "23503",
            "message": 'insert or update on table "orders" violates foreign key constraint '
                       '"orders_delivery_rider_id_fkey"',
            "details": f'Key (delivery_rider_id)=({rider_id}) is not present in table "users".',
        })

    rows = select_rows(table, request)
    for row in rows:
        row.update({key: value for key, value in fields.items() if key != "order_items"})
    log.info(f"[STORE] Updated {len(rows)} row(s) in '{table}'.")

    if "return=representation" in prefer:
        return _represent(table, rows)
    return Response(status_code=204)


def seed_demo_data():
    """Fills the tables with a small restaurant, two riders and a few orders."""
    now = datetime.now(timezone.utc)
    insert_rows("restaurants", [{"id": "rest-1", "name": "Saffron Palace", "location_id": "loc-ikeja"}])
    insert_rows("users", [
        {"id": "rider-1", "full_name": "Ada Obi", "phone_number": "+2348000000001", "user_type": "delivery_rider"},
        {"id": "rider-2", "full_name": "Tunde Bello", "phone_number": "+2348000000002", "user_type": "delivery_rider"},
        {"id": "user-1", "full_name": "Chidi Okafor", "user_type": "customer"},
    ])
    insert_rows("location_travel_times", [
        {"from_location_id": "loc-ikeja", "to_location_id": "loc-yaba", "average_minutes": 25},
    ])
    for index, (status, age) in enumerate([("pending", 7), ("confirmed", 3), ("preparing", 25), ("delivered", 90)]):
        order_id = f"order-{index + 1}"
        insert_rows("orders", [{
            "id": order_id,
            "order_status": status,
            "total_amount": 5500,
            "delivery_fee": 500,
            "delivery_address": "12 Herbert Macaulay Way, Yaba",
            "restaurant_id": "rest-1",
            "user_id": "user-1",
            "delivery_location_id": "loc-yaba",
            "created_at": (now - timedelta(minutes=age)).isoformat(),
        }])
        insert_rows("order_items", [
            {"order_id": order_id, "menu_item_id": "jollof-rice", "quantity": 2, "unit_price": 2500},
        ])


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    seed_demo_data()
    uvicorn.run(app, host="0.0.0.0", port=8002)

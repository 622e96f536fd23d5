"""Self-referential associations.

A table joined to itself gets numbered aliases (``employees1``,
``employees2``...), so each occurrence can be filtered and decoded
on its own.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncConnection

from sqla_associations import QueryRequest, belongs_to, has_many, sqla_request

from .models import Employee


employee_manager = belongs_to(Employee, Employee, key="manager")
employee_reports = has_many(Employee, Employee, key="reports")


async def get_employees_with_manager(conn: AsyncConnection) -> list[dict[str, Any]]:
    # SELECT ... FROM employees AS employees1
    # LEFT OUTER JOIN employees AS employees2 ON employees2.id = employees1.manager_id
    request = QueryRequest.all(Employee).including_optional(
        employee_manager.select([Employee.name])
    )
    prepared = request.prepare()
    result = await conn.execute(prepared.statement)
    return [prepared.decode(row).as_dict() for row in result.all()]


async def get_managers_of_managers(conn: AsyncConnection) -> list[dict[str, Any]]:
    # Three occurrences of the table: employees1, employees2, employees3
    request = sqla_request(model=Employee, loads=("manager.manager",), required=True)
    prepared = request.prepare()
    result = await conn.execute(prepared.statement)
    return [prepared.decode(row).as_dict() for row in result.all()]


async def get_team_leads(conn: AsyncConnection) -> list[dict[str, Any]]:
    # Employees with at least one report, reports are not selected
    request = QueryRequest.all(Employee).joining_required(employee_reports.select(()))
    prepared = request.prepare()
    result = await conn.execute(prepared.statement)
    return [prepared.decode(row).as_dict() for row in result.all()]

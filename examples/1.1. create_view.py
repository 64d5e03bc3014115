from examples.defaults import (
    analyst_id,
    maintainer_id,
    project_id,
    source_id,
    source_url,
    view_id,
    view_name,
)
from superview.config.defaults import logger
from superview.data_classes import Source, SqlVariable
from superview.engine.executor import create_executor
from superview.rbac.project_directory import RedisProjectDirectory
from superview.redis_catalog import RedisCatalog
from superview.view_service import ViewService

catalog = RedisCatalog()
service = ViewService(catalog, RedisProjectDirectory(catalog))

# ---------- PROJECT & SOURCE ----------
catalog.put_project(project_id, {
    "name": "analytics",
    "creator_id": maintainer_id,
    "maintainers": [],
    "members": {str(analyst_id): {"view_permission": 1, "source_permission": 0}},
})

source = Source(id=source_id, project_id=project_id, url=source_url, name="warehouse")
catalog.put_source(source)

create_executor(source).execute(
    "CREATE OR REPLACE TABLE sales AS SELECT * FROM (VALUES "
    "('sales', 'north', 10, 100), ('sales', 'south', 20, 200), "
    "('ops', 'north', 5, 50), ('hr', 'north', 7, 70), ('hr', 'south', 3, 30)"
    ") AS t(dept, region, amount, salary)"
)

# ---------- VIEW ----------
sql = "SELECT * FROM sales WHERE amount >= $min_amount$ AND $dept$"
variables = [
    SqlVariable(name="min_amount", type="query", default_values=["0"], value_type="number"),
    SqlVariable(name="dept", type="auth"),
]

with service.reserve_name(view_name, None, project_id) as available:
    if not available:
        logger.info(f"View name '{view_name}' is taken")
    else:
        catalog.put_view(view_id, project_id, view_name, sql, source_id, variables)
        logger.info(f"View created: {catalog.get_view_with_source(view_id)}")

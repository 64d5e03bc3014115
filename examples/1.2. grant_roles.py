import json

from examples.defaults import analyst_id, analyst_role_id, maintainer_id, view_id
from superview.config.defaults import logger
from superview.data_classes import RoleGrantRequest, User
from superview.rbac.project_directory import RedisProjectDirectory
from superview.redis_catalog import RedisCatalog
from superview.view_service import ViewService

catalog = RedisCatalog()
service = ViewService(catalog, RedisProjectDirectory(catalog))

catalog.add_user_role(analyst_id, analyst_role_id)

view = catalog.get_view_with_source(view_id)
roles = [
    RoleGrantRequest(
        role_id=analyst_role_id,
        row_auth=json.dumps([{"name": "dept", "values": ["sales", "ops"]}]),
        column_auth="salary",
    ),
]

future = service.submit_role_grants(view_id, view.variables, roles, User(id=maintainer_id))
logger.info(f"Grants stored: {future.result(timeout=10)}")
service.grant_writer.shutdown()

# Values for authorization variables no grant covers.
catalog.set_auth_values("dept", ["hr"])

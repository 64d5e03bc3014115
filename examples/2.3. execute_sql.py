from examples.defaults import maintainer_id, source_id
from superview.data_classes import SqlVariable, User, ViewExecuteSql
from superview.rbac.project_directory import RedisProjectDirectory
from superview.redis_catalog import RedisCatalog
from superview.view_service import ViewService

catalog = RedisCatalog()
service = ViewService(catalog, RedisProjectDirectory(catalog))

request = ViewExecuteSql(
    source_id=source_id,
    sql="SELECT dept, region, amount FROM sales WHERE dept = '$dept$' ORDER BY amount DESC",
    variables=[SqlVariable(name="dept", default_values=["sales"])],
    limit=10,
)

result = service.execute_sql(request, User(id=maintainer_id))
print("Columns:", [c.name for c in result.columns])
for row in result.result_list:
    print(row)

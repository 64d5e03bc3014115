from examples.defaults import analyst_id, maintainer_id, view_id
from superview.cache.result_cache import ResultCache
from superview.data_classes import ExecuteParams, Order, Param, User
from superview.rbac.auth_values import AuthValueResolver, RedisAuthValueSource
from superview.rbac.project_directory import RedisProjectDirectory
from superview.redis_catalog import RedisCatalog
from superview.view_service import ViewService

catalog = RedisCatalog()
service = ViewService(
    catalog,
    RedisProjectDirectory(catalog),
    result_cache=ResultCache(),
    auth_resolver=AuthValueResolver(RedisAuthValueSource(catalog)),
)

params = ExecuteParams(
    groups=["region"],
    aggregators=["count(*)", "sum(amount)", "sum(salary)"],
    orders=[Order(column="region")],
    params=[Param(name="min_amount", value=5)],
    page_no=1,
    page_size=20,
    total_count=True,
    cache=True,
    expired=300,
)

for user_id in (maintainer_id, analyst_id):
    result = service.get_data(view_id, params, User(id=user_id))
    print("-" * 52)
    print("User:", user_id, ", Rows:", len(result.result_list), ", Total:", result.total_count)
    print("Columns:", [c.name for c in result.columns])
    for row in result.result_list:
        print(row)
print("-" * 52)

from examples.defaults import analyst_id, view_id
from superview.data_classes import DistinctParam, Param, User
from superview.rbac.project_directory import RedisProjectDirectory
from superview.redis_catalog import RedisCatalog
from superview.view_service import ViewService

catalog = RedisCatalog()
service = ViewService(catalog, RedisProjectDirectory(catalog))

regions = service.get_distinct_value(view_id, DistinctParam(columns=["region"]), User(id=analyst_id))
print("Regions:", regions)

ops_regions = service.get_distinct_value(
    view_id,
    DistinctParam(columns=["region"], parents=[Param(name="dept", value="ops")]),
    User(id=analyst_id),
)
print("Regions for ops:", ops_regions)

import logging

logging.getLogger('superview').setLevel(logging.DEBUG)

project_id = 1
source_id = 1
view_id = 10
view_name = "sales_by_dept"
source_url = "duckdb:///tmp/superview_example.duckdb"

maintainer_id = 100
analyst_id = 7
analyst_role_id = 3

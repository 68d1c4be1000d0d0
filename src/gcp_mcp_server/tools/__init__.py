"""Tool modules; importing this package registers every tool with ``registry``."""

from . import analytics, bigquery, cloud, query_builder, schema_intelligence, sql_interface, templates  # noqa: F401

"""Authentication dependencies for routers."""

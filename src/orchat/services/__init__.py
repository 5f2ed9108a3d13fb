"""Service layer helpers used by the HTTP routers."""

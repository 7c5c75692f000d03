"""photocat API routers."""

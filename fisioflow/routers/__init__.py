"""HTTP routers, one per business area, mounted under /api by fisioflow.api_main."""

"""
Entitlements Service package.

This package decides whether a staff member may call an HTTP method on a
request path. It provides:

- app.main: API surface for permission checks, explanations and health.
- app.rules: Data model, Ant-style matchers and the permission evaluator.
- app.persistence: Read-only principal/role/resource directories.
- app.enforcement: FastAPI dependency mapping decisions to 401/403.
- app.audit: Audit trail middleware.

Guidelines:
- The evaluator is stateless and never caches decisions; every check
  re-reads the directory.
- A store failure is an error, never a denial.
- Keep evaluation deterministic and observable (metrics + logs).
"""

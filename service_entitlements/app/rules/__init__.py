"""
Permission rules package.

Modules of interest:
- models: Principals, roles, resources and the UriRule/OpaqueRule variant.
- matchers: Path, method, rule and group matchers.
- engine: PermissionEvaluator, the resolve -> filter -> match pipeline.
"""

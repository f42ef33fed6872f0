"""
Directories the permission evaluator reads principals, roles and resources from.
"""

"""
Endpoint registry and role default matrix.

Resources are classified by an explicit pattern registry loaded at startup
(built-in defaults or a YAML file); the role matrix says which operations
each role may perform per access class and how broad a data scope it
reaches. Together they form the deny-by-default baseline.
"""

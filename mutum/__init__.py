"""
Mutum Sanctuary Service

Guardian onboarding forms, production tracking, shipments and payroll
for the Mutum/Nipëihu sanctuary, backed by a hosted PostgreSQL store.
"""

__version__ = "0.1.0"

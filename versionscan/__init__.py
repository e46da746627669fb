"""versionscan — check an installed runtime version against known CVEs.

This package provides the rule evaluation and vendor patch reconciliation
logic, plus the loaders, configuration, reporting and CLI around it.
"""

__version__ = "0.3.0"

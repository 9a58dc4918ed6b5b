"""BizFlow - small-business data core with spreadsheet and hosted backend sync"""

__version__ = "0.1.0"

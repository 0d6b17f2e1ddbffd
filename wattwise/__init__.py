"""
WattWise - LLM-assisted power and thermal budgeting for IT bills of materials.
"""

__version__ = "1.2.0"

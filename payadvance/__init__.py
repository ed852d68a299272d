"""
PayAdvance - Salary Advance Lifecycle Engine

Policy-driven salary advances repaid through payroll deductions.
"""

__version__ = "0.1.0"

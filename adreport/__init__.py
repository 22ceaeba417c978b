"""
AD OU user report with nested group membership columns.

Reads users from the configured OUs, marks membership in each requested
group (nested groups included), writes an .xlsx report and e-mails it.
Strictly read-only towards the directory.
"""

__version__ = "1.0.0"

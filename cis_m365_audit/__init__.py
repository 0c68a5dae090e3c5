"""
CIS Microsoft 365 Foundations Audit Engine
==========================================
Read-only audit of a Microsoft 365 tenant against the CIS Microsoft 365
Foundations Benchmark. Every control queries Microsoft Graph, Exchange Online
or public DNS and classifies the tenant as PASS, FAIL, ERROR or MANUAL.

WARNING: This tool operates in STRICT READ-ONLY mode.
         No write operations will be performed against the tenant.
"""

__version__ = "1.0.0"
__author__ = "CIS M365 Audit Engine"
__mode__ = "READ-ONLY"

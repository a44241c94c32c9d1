"""
AirLink audit and transfer-integrity verification pipeline.

Components:
- Transfer state machine and session store
- SHA-256 checksum verification
- Automated audit test runner
- Consolidated audit orchestrator
- Result merging, evidence indexing and report generation
"""

__version__ = "1.0.0"

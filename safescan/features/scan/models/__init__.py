from safescan.platform.db.base import Base
from safescan.features.scan.models.scan_job import ScanJob, ScanJobState, TERMINAL_STATES
from safescan.features.scan.models.scan_result import ScanResult
from safescan.features.scan.models.wallet import Wallet
from safescan.features.scan.models.audit_log import AuditLogEntry

__all__ = [
    "Base",
    "ScanJob",
    "ScanJobState",
    "TERMINAL_STATES",
    "ScanResult",
    "Wallet",
    "AuditLogEntry",
]

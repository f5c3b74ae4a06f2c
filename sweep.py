from __future__ import annotations

from dataclasses import dataclass, field
import logging

from errors import RegistryError
from ledger import ServiceLedger

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    scanned: int = 0
    active_nodes: int = 0
    emptied: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # service -> error kind

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "activeNodes": self.active_nodes,
            "emptied": self.emptied,
            "failed": self.failed,
        }


class SweepCoordinator:
    """Compacts every service in the store.

    Listing keys is the most expensive store call, so this only runs on the
    low-frequency health check, never on register/heartbeat/discover.
    """

    def __init__(self, ledger: ServiceLedger):
        self.ledger = ledger

    async def sweep_all(self) -> SweepReport:
        report = SweepReport()
        keys = await self.ledger.store.list_keys("")
        for service in keys:
            report.scanned += 1
            try:
                active = await self.ledger.expire_and_compact(service)
            except RegistryError as e:
                logger.warning("sweep skipped %s: %s", service, e)
                report.failed[service] = e.kind
                continue
            except Exception:
                logger.exception("sweep skipped %s after unexpected error", service)
                report.failed[service] = RegistryError.kind
                continue
            report.active_nodes += len(active)
            if not active:
                report.emptied.append(service)
        logger.info(
            "sweep done: %d service(s), %d active node(s), %d emptied, %d failed",
            report.scanned, report.active_nodes, len(report.emptied), len(report.failed),
        )
        return report

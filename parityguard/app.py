"""Wiring of the services used by the CLI and the queue processor."""

from dataclasses import dataclass

from parityguard.cache import Cache
from parityguard.config import Config
from parityguard.database import Database
from parityguard.metadata import MetadataManager
from parityguard.par2 import Par2Runner, ResourceLimits
from parityguard.protection import ParityOperations, ProtectionRepository, ProtectionService
from parityguard.queue import EventLog, OperationQueue, ProcessorLock, QueueProcessor
from parityguard.verification import (
    VerificationOperations,
    VerificationRepository,
    VerificationService,
)


@dataclass
class Services:
    config: Config
    db: Database
    cache: Cache
    queue: OperationQueue
    events: EventLog
    protection_repository: ProtectionRepository
    verification_repository: VerificationRepository
    metadata: MetadataManager
    protection: ProtectionService
    verification: VerificationService

    def processor(self) -> QueueProcessor:
        return QueueProcessor(
            db=self.db,
            queue=self.queue,
            events=self.events,
            protection=self.protection,
            verification=self.verification,
            verification_repository=self.verification_repository,
            settings=self.config.queue,
            max_concurrent=self.config.resource_limits.max_concurrent_operations,
            lock=ProcessorLock(self.config.queue.lock_path),
        )


def build_services(config: Config, db: Database, runner: Par2Runner | None = None) -> Services:
    """Construct every component once, sharing one database and one cache.

    ``runner`` defaults to the configured par2 path, which raises
    Par2NotFoundError if par2 is not installed.
    """
    if runner is None:
        runner = Par2Runner(config.protection.par2_path)

    cache = Cache()
    limits = ResourceLimits.from_config(config.resource_limits, config.protection)
    protection_repository = ProtectionRepository(db, cache)
    verification_repository = VerificationRepository(db, cache)
    metadata = MetadataManager(db, parity_dir=config.protection.parity_dir)

    protection = ProtectionService(
        protection_repository,
        ParityOperations(runner, config.protection, limits),
        metadata,
        config.protection,
    )
    verification = VerificationService(
        protection_repository,
        verification_repository,
        VerificationOperations(runner, limits),
        metadata,
    )
    return Services(
        config=config,
        db=db,
        cache=cache,
        queue=OperationQueue(db),
        events=EventLog(db),
        protection_repository=protection_repository,
        verification_repository=verification_repository,
        metadata=metadata,
        protection=protection,
        verification=verification,
    )

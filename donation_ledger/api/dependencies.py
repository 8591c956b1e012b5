from fastapi import Depends
from sqlalchemy.orm import Session

from donation_ledger.cache.redis import RedisCache, get_cache
from donation_ledger.database.database import get_db
from donation_ledger.kafka.producer import KafkaProducer, get_kafka_producer
from donation_ledger.providers.registry import ProviderRegistry, get_provider_registry
from donation_ledger.services.initiator import OrderInitiator
from donation_ledger.services.reconciler import ConfirmationReconciler


def get_order_initiator(
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry)
) -> OrderInitiator:
    return OrderInitiator(db=db, registry=registry)


def get_reconciler(
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    producer: KafkaProducer = Depends(get_kafka_producer),
    cache: RedisCache = Depends(get_cache)
) -> ConfirmationReconciler:
    return ConfirmationReconciler(db=db, registry=registry, producer=producer, cache=cache)

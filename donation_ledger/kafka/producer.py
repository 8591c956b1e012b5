import json
from typing import Optional
import structlog
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from donation_ledger.core.config import get_settings

logger = structlog.get_logger(__name__)


class KafkaProducer:
    """Publishes ledger events for realtime consumers"""

    def __init__(self):
        self.producer: Optional[AIOKafkaProducer] = None
        self.settings = get_settings()

    async def start(self):
        """Initialize and start Kafka producer"""
        if not self.settings.kafka_enabled:
            logger.info("Kafka disabled, donation events will not be published")
            return

        producer = AIOKafkaProducer(
            bootstrap_servers=self.settings.kafka_bootstrap_servers,
            value_serializer=lambda v: json.dumps(v, default=str).encode('utf-8'),
            compression_type='gzip',
            acks='all',
            retry_backoff_ms=500,
            request_timeout_ms=30000,
        )
        try:
            await producer.start()
        except KafkaError as e:
            logger.error("Failed to start Kafka producer", error=str(e))
            raise

        self.producer = producer
        logger.info("Kafka producer started", bootstrap_servers=self.settings.kafka_bootstrap_servers)

    async def stop(self):
        """Stop Kafka producer gracefully"""
        if self.producer:
            try:
                await self.producer.stop()
                logger.info("Kafka producer stopped")
            except KafkaError as e:
                logger.error("Error stopping Kafka producer", error=str(e))
            finally:
                self.producer = None

    @property
    def is_connected(self) -> bool:
        return self.producer is not None

    async def publish_donation_confirmed(self, donation_data: dict):
        """
        Publish donation_confirmed after a donation reached the ledger

        Args:
            donation_data: Confirmed donation fields (email is never included)
        """
        if not self.producer:
            logger.debug("Kafka producer not running, skipping donation_confirmed event",
                         donation_id=donation_data.get("id"))
            return

        event = {
            "event_type": "donation_confirmed",
            "donation_id": donation_data.get("id"),
            "category_id": donation_data.get("category_id"),
            "donor_name": donation_data.get("donor_name"),
            "amount": float(donation_data.get("amount", 0)),
            "is_anonymous": donation_data.get("is_anonymous", False),
            "provider": donation_data.get("provider"),
            "timestamp": donation_data.get("created_at")
        }

        try:
            await self.producer.send_and_wait(
                self.settings.kafka_topic_donation_confirmed,
                value=event
            )
            logger.info(
                "Published donation_confirmed event",
                donation_id=event["donation_id"],
                topic=self.settings.kafka_topic_donation_confirmed
            )
        except KafkaError as e:
            # The ledger is already committed; the event is informational
            logger.error(
                "Failed to publish donation_confirmed event",
                donation_id=event["donation_id"],
                error=str(e)
            )


# Global producer instance
kafka_producer = KafkaProducer()


async def get_kafka_producer() -> KafkaProducer:
    """Get Kafka producer instance"""
    return kafka_producer

"""
Authenticated Kafka connections.

Both roles connect over SASL_SSL with certificate and hostname
verification, authenticating with SCRAM-SHA-256 through the
ScramAuthenticator in transport.scram. There is no plaintext or
unauthenticated fallback.
"""

import ssl

import structlog
from kafka import KafkaConsumer, KafkaProducer, TopicPartition
from kafka.sasl import register_sasl_mechanism
from kafka.sasl.abc import SaslMechanism

from analytics_pipeline.core.config import Settings
from analytics_pipeline.core.errors import AuthProtocolError, TransportAuthError
from analytics_pipeline.transport.scram import SHA256, ScramAuthenticator

logger = structlog.get_logger()

SECURITY_PROTOCOL = "SASL_SSL"
SASL_MECHANISM = "SCRAM-SHA-256"


class ScramSaslMechanism(SaslMechanism):
    """Drives a ScramAuthenticator from kafka-python's SASL handshake loop"""

    def __init__(self, **config):
        self._authenticator = ScramAuthenticator(SHA256)
        self._authenticator.begin(config["sasl_plain_username"], config["sasl_plain_password"])
        self._failed = False
        self._outgoing = self._authenticator.step("")

    def auth_bytes(self):
        return self._outgoing.encode("utf-8")

    def receive(self, auth_bytes):
        try:
            self._outgoing = self._authenticator.step(auth_bytes.decode("utf-8"))
        except (AuthProtocolError, UnicodeDecodeError) as e:
            logger.error("kafka_sasl_negotiation_failed", mechanism=SASL_MECHANISM, error=str(e))
            self._failed = True
            self._outgoing = ""

    def is_done(self):
        return self._failed or self._authenticator.done()

    def is_authenticated(self):
        return not self._failed and self._authenticator.done()

    def auth_details(self):
        if not self.is_authenticated():
            raise RuntimeError("Not authenticated yet!")
        return f"Authenticated via {SASL_MECHANISM}"


register_sasl_mechanism(SASL_MECHANISM, ScramSaslMechanism, overwrite=True)


def build_kafka_security_config(settings: Settings) -> dict:
    """Build the SASL_SSL + SCRAM config shared by producer and consumer.

    Raises TransportAuthError when credentials are not configured, before
    any connection is attempted.
    """
    if not settings.kafka_user or not settings.kafka_password:
        raise TransportAuthError("KAFKA_USER and KAFKA_PASSWORD must be set")

    return {
        "security_protocol": SECURITY_PROTOCOL,
        "sasl_mechanism": SASL_MECHANISM,
        "sasl_plain_username": settings.kafka_user,
        "sasl_plain_password": settings.kafka_password,
        # Verifies the broker certificate chain and hostname
        "ssl_context": ssl.create_default_context(),
        "ssl_check_hostname": True,
    }


def create_producer(settings: Settings) -> KafkaProducer:
    """Producer that waits for all in-sync replicas and retries sends internally"""
    security = build_kafka_security_config(settings)

    try:
        producer = KafkaProducer(
            bootstrap_servers=settings.kafka_broker.split(","),
            acks="all",  # Wait for all in-sync replicas
            retries=settings.kafka_send_retries,
            request_timeout_ms=settings.kafka_request_timeout_ms,
            delivery_timeout_ms=settings.kafka_delivery_timeout_ms,
            max_in_flight_requests_per_connection=1,
            **security
        )
    except Exception as e:
        logger.error("kafka_producer_init_failed", broker=settings.kafka_broker, error=str(e))
        raise

    logger.info("kafka_producer_connected", broker=settings.kafka_broker, mechanism=SASL_MECHANISM)
    return producer


def create_consumer(settings: Settings) -> KafkaConsumer:
    """Consumer with a single manually assigned partition, positioned at the newest offset"""
    security = build_kafka_security_config(settings)

    try:
        consumer = KafkaConsumer(
            bootstrap_servers=settings.kafka_broker.split(","),
            enable_auto_commit=False,
            request_timeout_ms=settings.kafka_request_timeout_ms,
            **security
        )
        partition = TopicPartition(settings.kafka_topic, settings.kafka_partition)
        consumer.assign([partition])
        consumer.seek_to_end(partition)
    except Exception as e:
        logger.error("kafka_consumer_init_failed", broker=settings.kafka_broker, error=str(e))
        raise

    logger.info(
        "kafka_consumer_connected",
        broker=settings.kafka_broker,
        topic=settings.kafka_topic,
        partition=settings.kafka_partition
    )
    return consumer

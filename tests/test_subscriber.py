import logging
from types import SimpleNamespace

from datastore.memory_store import InMemoryStore
from services.ingestion import IngestionService
from services.subscriber import TOPICS, MqttSubscriber


SUCCESS = SimpleNamespace(is_failure=False)
NOT_AUTHORIZED = SimpleNamespace(is_failure=True)


class FakeClient:
    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        self.subscribed: list[str] = []
        self.credentials = None
        self.started = False
        self.connected_to = None

    def username_pw_set(self, username, password) -> None:
        self.credentials = (username, password)

    def tls_set(self) -> None:
        pass

    def subscribe(self, topic: str) -> None:
        self.subscribed.append(topic)

    def connect_async(self, host: str, port: int) -> None:
        self.connected_to = (host, port)

    def loop_start(self) -> None:
        self.started = True

    def loop_stop(self) -> None:
        self.started = False

    def disconnect(self) -> None:
        pass


def _subscriber(store: InMemoryStore, **kwargs) -> MqttSubscriber:
    return MqttSubscriber(IngestionService(store), client_factory=FakeClient, **kwargs)


def _message(topic: str, payload: bytes):
    return SimpleNamespace(topic=topic, payload=payload)


def test_subscribes_on_connect() -> None:
    subscriber = _subscriber(InMemoryStore(), username="user", password="pw", client_id="ingest-1")

    subscriber.start()
    subscriber._on_connect(subscriber.client, None, {}, SUCCESS)

    assert subscriber.client.client_id == "ingest-1"
    assert subscriber.client.credentials == ("user", "pw")
    assert subscriber.client.connected_to == ("localhost", 1883)
    assert subscriber.client.started is True
    assert subscriber.client.subscribed == list(TOPICS)


def test_refused_connection_does_not_subscribe(caplog) -> None:
    subscriber = _subscriber(InMemoryStore())

    with caplog.at_level(logging.ERROR):
        subscriber._on_connect(subscriber.client, None, {}, NOT_AUTHORIZED)

    assert subscriber.client.subscribed == []
    assert any("refused" in r.getMessage() for r in caplog.records)


def test_messages_are_ingested() -> None:
    store = InMemoryStore()
    subscriber = _subscriber(store)

    subscriber._on_message(
        subscriber.client, None, _message("zigbee/device/sensor", b'{"tmp": 21.0}')
    )

    assert {r.processed for r in store.scan_readings("device")} == {False, True}


def test_failing_message_is_logged_and_loop_continues(caplog) -> None:
    class BrokenStore(InMemoryStore):
        def upsert_reading(self, reading, merge=False) -> None:
            raise RuntimeError("store unavailable")

    subscriber = _subscriber(BrokenStore())

    with caplog.at_level(logging.ERROR):
        subscriber._on_message(
            subscriber.client, None, _message("zigbee/device/sensor", b'{"tmp": 21.0}')
        )

    record = next(r for r in caplog.records if r.getMessage() == "Failed to ingest message")
    assert record.exc_info is not None
    assert record.topic == "zigbee/device/sensor"

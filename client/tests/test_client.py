"""Application starter tests."""

import logging
from datetime import datetime, timezone

import pytest
from fake_transport import make_message

from chat_client import ChatClient
from chat_client.config import ClientConfig
from chat_client.connection_manager import ReconnectPolicy


@pytest.fixture()
def client(tmp_path):
    """Provide a client logging into a temporary file."""
    config = ClientConfig(
        server_url="ws://chat.example",
        api_url="http://chat.example",
        token="token",
        user_id=1,
        reconnect_policy=ReconnectPolicy(),
        logfile_path=str(tmp_path / "client.log"),
    )
    client = ChatClient(config)
    lines = []
    client.ui._output = lines.append
    client.lines = lines
    yield client

    logger = logging.getLogger("chat-logger")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_duplicate_delivery_shown_once(client):
    """Test that a redelivered message is stored and shown only once."""
    client.view_model.select_correspondent(42)
    message = make_message(
        1, 42, 1, datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc), "hi"
    )

    client._handle_downstream_message(message)
    client._handle_downstream_message(message)

    assert len(client.store) == 1
    assert len(client.lines) == 1
    assert client.lines[0].endswith("hi")


def test_logger_configured(client, tmp_path):
    """Test that the client logs into the configured file."""
    client.log.info("hello log")
    for handler in client.log.handlers:
        handler.flush()

    assert "hello log" in (tmp_path / "client.log").read_text()


def test_state_changes_reported(client):
    """Test that the UI listens to the connection state."""
    assert client.ui.on_state_changed in client.connection.state_listeners

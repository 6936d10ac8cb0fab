from typing import List

import pytest

from localchat.session import SessionController
from localchat.store import SessionState
from tests.fakes import FakeConversation, FakeProvider


@pytest.fixture
def conversation() -> FakeConversation:
    return FakeConversation()


@pytest.fixture
def provider(conversation: FakeConversation) -> FakeProvider:
    return FakeProvider(conversation)


@pytest.fixture
def controller(provider: FakeProvider) -> SessionController:
    return SessionController(provider)


@pytest.fixture
def states(controller: SessionController) -> List[SessionState]:
    """Every snapshot the controller publishes, in order."""
    recorded: List[SessionState] = []
    controller.store.subscribe(recorded.append)
    return recorded


@pytest.fixture
async def ready_controller(controller: SessionController) -> SessionController:
    assert await controller.load_model()
    return controller

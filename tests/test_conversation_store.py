import pytest

from shopbot.conversation.drafts import CheckoutDraft, SearchDraft
from shopbot.conversation.store import ConversationStore


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_get_creates_idle_state():
    store = ConversationStore()
    state = store.get(1)
    assert state.flow is None
    assert state.staged_discount is None
    assert 1 in store


def test_chats_are_isolated():
    store = ConversationStore()
    store.get(1).flow = CheckoutDraft()
    store.get(2).flow = SearchDraft()
    assert isinstance(store.get(1).flow, CheckoutDraft)
    assert isinstance(store.get(2).flow, SearchDraft)

    store.clear(1)
    assert 1 not in store
    assert isinstance(store.get(2).flow, SearchDraft)


def test_clear_flow_keeps_staged_discount():
    store = ConversationStore()
    state = store.get(5)
    state.flow = CheckoutDraft()
    state.staged_discount = "quote"
    state.clear_flow()
    assert state.flow is None
    assert store.get(5).staged_discount == "quote"


def test_idle_entries_expire():
    clock = FakeClock()
    store = ConversationStore(ttl_seconds=60, clock=clock)
    store.get(1).flow = CheckoutDraft()

    clock.now = 30
    assert store.get(1).flow is not None

    # 30s after the last touch is still inside the window
    clock.now = 89
    assert store.peek(1) is not None

    clock.now = 200
    assert store.peek(1) is None
    assert store.get(1).flow is None


def test_zero_ttl_never_expires():
    clock = FakeClock()
    store = ConversationStore(clock=clock)
    store.get(1).flow = CheckoutDraft()
    clock.now = 10 ** 9
    assert store.get(1).flow is not None


@pytest.mark.asyncio
async def test_clear_under_lock_resets_in_place():
    store = ConversationStore()
    store.get(3).flow = CheckoutDraft()
    lock = store.lock(3)
    async with lock:
        store.clear(3)
        assert store.get(3).flow is None
        assert store.lock(3) is lock
    assert len(store) == 1

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture

from notifier.channel import build_fake_senders
from notifier.config import DispatchConfig
from notifier.delivery.dead_letter import InMemoryDeadLetterSink
from notifier.delivery.dispatcher import DeliveryDispatcher


class FakeClock:
    """Settable clock; ``advance`` moves it forward in seconds."""

    def __init__(self, now=None):
        self.now = now or datetime.now(UTC)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class RecordingSleep:
    """Async sleep that records delays and advances the clock instead of waiting.

    Yields to the event loop first so sibling channel tasks run at the
    current time.
    """

    def __init__(self, clock):
        self.clock = clock
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)
        await asyncio.sleep(0)
        self.clock.advance(seconds)


@pytest.fixture(scope="session")
def notifier_bed():
    from notifier.domain import notifier

    bed = DomainFixture(notifier)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(notifier_bed):
    with notifier_bed.domain_context():
        yield

        # Clear all databases
        for _, provider in current_domain.providers.items():
            provider._data_reset()

        # Drain event stores
        current_domain.event_store.store._data_reset()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def sleeper(clock):
    return RecordingSleep(clock)


@pytest.fixture()
def senders():
    return build_fake_senders()


@pytest.fixture()
def dead_letters():
    return InMemoryDeadLetterSink()


@pytest.fixture()
def dispatch_config():
    return DispatchConfig(max_retries=3, retry_delay_base_ms=1000, max_retry_delay_ms=60000)


@pytest.fixture()
def dispatcher(senders, dead_letters, dispatch_config, clock, sleeper):
    return DeliveryDispatcher(
        senders=senders,
        dead_letters=dead_letters,
        config=dispatch_config,
        clock=clock,
        sleep=sleeper,
    )

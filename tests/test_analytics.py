"""Tests for listing view and click counters."""

import logging

import pytest
import pytest_asyncio

from listings import AnalyticsRecorder, CounterType

@pytest_asyncio.fixture
async def recorder(backend):
    return AnalyticsRecorder(backend, fallback_enabled=True)

@pytest.mark.asyncio
async def test_increment_uses_procedure(recorder, backend, listing):
    assert await recorder.increment(listing['id'], CounterType.VIEW) is True
    assert await recorder.increment(listing['id'], CounterType.VIEW) is True
    assert await recorder.increment(listing['id'], CounterType.WHATSAPP) is True

    analytics = backend.listing_row(listing['id'])['analytics']
    assert analytics == {'views': 2, 'whatsapp_clicks': 1, 'email_clicks': 0}
    assert backend.calls[0] == (
        'increment_listing_counter',
        {'listing_id': listing['id'], 'counter_type': 'view'}
    )

@pytest.mark.asyncio
async def test_fallback_when_procedure_fails(recorder, backend, listing):
    backend.failing_procedures.add('increment_listing_counter')

    assert await recorder.increment(listing['id'], 'email') is True

    assert backend.listing_row(listing['id'])['analytics']['email_clicks'] == 1

@pytest.mark.asyncio
async def test_fallback_starts_from_empty_bag(recorder, backend, seller):
    row = backend.add_listing(seller.user_id, analytics=None)
    backend.failing_procedures.add('increment_listing_counter')

    assert await recorder.increment(row['id'], CounterType.VIEW) is True

    assert backend.listing_row(row['id'])['analytics'] == {'views': 1}

@pytest.mark.asyncio
async def test_fallback_lost_race_is_dropped(recorder, backend, listing, monkeypatch, caplog):
    """A concurrent write between read and update drops this increment."""
    backend.failing_procedures.add('increment_listing_counter')
    original_update = backend.update

    async def racing_update(table, values, *, filters, either=None):
        # Another writer bumps the counter after our read
        backend.listing_row(listing['id'])['analytics'] = {
            'views': 7, 'whatsapp_clicks': 0, 'email_clicks': 0
        }
        return await original_update(table, values, filters=filters, either=either)

    monkeypatch.setattr(backend, 'update', racing_update)

    with caplog.at_level(logging.WARNING, logger='listings.analytics'):
        assert await recorder.increment(listing['id'], CounterType.VIEW) is False

    assert backend.listing_row(listing['id'])['analytics']['views'] == 7
    assert 'not counted' in caplog.text

@pytest.mark.asyncio
async def test_fallback_disabled(backend, listing):
    recorder = AnalyticsRecorder(backend, fallback_enabled=False)
    backend.failing_procedures.add('increment_listing_counter')

    assert await recorder.increment(listing['id'], CounterType.VIEW) is False

    assert backend.listing_row(listing['id'])['analytics']['views'] == 0

@pytest.mark.asyncio
async def test_unreachable_backend_is_not_raised(recorder, backend, listing):
    backend.unavailable = True

    assert await recorder.increment(listing['id'], CounterType.VIEW) is False

@pytest.mark.asyncio
async def test_fallback_unknown_listing(recorder, backend):
    backend.failing_procedures.add('increment_listing_counter')

    assert await recorder.increment('missing', CounterType.VIEW) is False

def test_unknown_counter_type():
    with pytest.raises(ValueError):
        CounterType('share')

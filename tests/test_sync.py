from datetime import date

import pytest

from conftest import FakeService, london
from countdown import CountdownEngine
from notifications import AlertPreference, AlertType, NotificationScheduler, SchedulerNotificationCenter
from prayer_errors import NetworkError
from prayer_sequence import SequenceBuilder
from prayer_sync import SYNC_ERROR_TOPIC, SyncController
from prayer_times import ScheduleKind


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture
def make_controller(context, scheduler):
    def make(service, notifications=False):
        builder = SequenceBuilder(context)
        notifier = None
        if notifications:
            notifier = NotificationScheduler(context, builder, SchedulerNotificationCenter(scheduler))
        return SyncController(
            context,
            service,
            builder,
            CountdownEngine(context, builder, scheduler),
            scheduler,
            notifications=notifier,
        )

    return make


def test_cold_start_fetches_and_starts_timers(make_controller, service, context, scheduler):
    controller = make_controller(service)

    controller.sync()

    assert service.calls == [2026]
    assert context.db.fetched_years() == {"2026": True}
    assert not context.db.has_day(date(2026, 1, 15))
    assert context.db.has_day(date(2026, 1, 16))
    assert context.get("sequence:standard").center_date == "2026-01-18"
    assert context.get("countdown:standard").seconds_remaining == 2 * 3600 + 15 * 60
    assert scheduler.running_keys() == ["extra", "midnight-watch", "overlay", "standard"]
    assert context.get(SYNC_ERROR_TOPIC) is None
    assert scheduler._scheduler.get_job("midnight-watch").executor == "io"


def test_second_sync_uses_stored_data(make_controller, service):
    controller = make_controller(service)
    controller.sync()
    controller.sync()

    assert service.calls == [2026]


def test_december_prefetches_next_year(make_controller, service, context, seed_days, clock):
    clock.set(london(2026, 12, 10, 9, 0))
    seed_days(date(2026, 12, 1), 31)
    context.db.mark_year_fetched(2026)
    context.db.set_stored_version(context.config.app_version)

    make_controller(service).sync()

    assert service.calls == [2026, 2027]
    assert context.db.is_year_fetched(2027)
    assert context.db.has_day(date(2027, 6, 1))


def test_january_first_loads_end_of_previous_year(make_controller, service, context, clock):
    clock.set(london(2027, 1, 1, 9, 0))

    make_controller(service).sync()

    assert service.calls == [2027, 2026]
    assert context.db.has_day(date(2026, 12, 31))
    assert context.get("sequence:standard").prayers[0].belongs_to_date == "2026-12-31"


def test_fetch_failure_keeps_existing_data(make_controller, context, seed_days, clock):
    seed_days(date(2026, 1, 1), 20)
    context.db.set_stored_version(context.config.app_version)
    clock.set(london(2026, 1, 25, 9, 0))
    controller = make_controller(FakeService(error=NetworkError("offline")))

    with pytest.raises(NetworkError):
        controller.sync()

    assert context.db.has_day(date(2026, 1, 10))
    assert isinstance(context.get(SYNC_ERROR_TOPIC), NetworkError)


def test_failed_sync_keeps_last_known_good_state(make_controller, service, context, clock, scheduler):
    controller = make_controller(service)
    controller.sync()
    sequence = context.get("sequence:standard")
    clock.set(london(2026, 12, 5, 10, 0))
    service.error = NetworkError("offline")

    with pytest.raises(NetworkError):
        controller.sync()

    assert service.calls == [2026, 2026]
    assert context.get("sequence:standard") is sequence
    assert context.get("countdown:standard") is not None
    assert scheduler.running_keys() == ["extra", "midnight-watch", "overlay", "standard"]
    assert isinstance(context.get(SYNC_ERROR_TOPIC), NetworkError)


def test_upgrade_clears_prayer_data_but_keeps_preferences(make_controller, service, context, seed_days):
    seed_days(date(2025, 12, 1), 10)
    context.db.mark_year_fetched(2025)
    context.db.set_stored_version("0.9.0")
    context.db.set_alert_preference(ScheduleKind.STANDARD, 3, {"at_time_alert": 2})

    make_controller(service).sync()

    assert not context.db.has_day(date(2025, 12, 5))
    assert context.db.get_stored_version() == context.config.app_version
    assert context.db.get_alert_preference(ScheduleKind.STANDARD, 3) == {"at_time_alert": 2}
    assert context.db.fetched_years() == {"2026": True}


def test_sync_refreshes_stale_notifications(make_controller, service, context):
    context.db.set_alert_preference(ScheduleKind.STANDARD, 3, AlertPreference(AlertType.SOUND).to_dict())
    controller = make_controller(service, notifications=True)

    controller.sync()

    assert len(controller.notifications.records()) == 7


def test_date_change_triggers_sync(make_controller, service, clock, context):
    controller = make_controller(service)
    controller.sync()

    assert controller.check_date_change() is False

    clock.set(london(2026, 1, 19, 0, 0, 30))
    assert controller.check_date_change() is True
    assert context.get("sequence:standard").center_date == "2026-01-19"

"""
Unit tests for scheduler (dbbackup/scheduler.py).

Tests cron parsing, APScheduler configuration and job scheduling.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from dbbackup import scheduler as scheduler_module
from dbbackup.config import ConfigurationError
from dbbackup.models import BackupRequest, DatabaseKind, ScheduleRequest


@pytest.fixture
def backup_request():
    return BackupRequest(DatabaseKind.MYSQL)


class TestParseCronExpression:
    """Test parse_cron_expression."""

    def test_five_fields(self):
        trigger = scheduler_module.parse_cron_expression('0 2 * * *')

        assert isinstance(trigger, CronTrigger)
        fields = {f.name: str(f) for f in trigger.fields}
        assert fields['minute'] == '0'
        assert fields['hour'] == '2'
        assert fields['second'] == '0'

    def test_six_fields_seconds_first(self):
        trigger = scheduler_module.parse_cron_expression('30 */15 * * * mon-fri')

        fields = {f.name: str(f) for f in trigger.fields}
        assert fields['second'] == '30'
        assert fields['minute'] == '*/15'
        assert fields['day_of_week'] == 'mon-fri'

    @pytest.mark.parametrize("expression", [
        'invalid cron',
        '',
        '* * *',
        '* * * * * * *',
        '61 * * * *',
        '* * * * 99',
        'a b c d e',
    ])
    def test_invalid(self, expression):
        with pytest.raises(ConfigurationError, match="Invalid cron expression"):
            scheduler_module.parse_cron_expression(expression)


# Monday 2026-10-19 00:00 UTC
MONDAY = datetime(2026, 10, 19, tzinfo=timezone.utc)


class TestDayOfWeek:
    """Test crontab weekday numbering (0 and 7 are Sunday)."""

    @staticmethod
    def _next_fire(expression):
        return scheduler_module.parse_cron_expression(expression).get_next_fire_time(None, MONDAY)

    @pytest.mark.parametrize("expression", ['0 2 * * 0', '0 2 * * 7', '0 0 2 * * 0', '0 0 2 * * 7'])
    def test_sunday(self, expression):
        next_fire = self._next_fire(expression)

        assert next_fire.strftime('%A') == 'Sunday'
        assert (next_fire.year, next_fire.month, next_fire.day, next_fire.hour) == (2026, 10, 25, 2)

    def test_weekday_range(self):
        """Test 1-5 means Monday through Friday."""
        next_fire = self._next_fire('0 2 * * 1-5')

        assert next_fire.strftime('%A') == 'Monday'
        assert next_fire.day == 19

    def test_saturday(self):
        assert self._next_fire('0 2 * * 6').strftime('%A') == 'Saturday'

    def test_range_starting_sunday(self):
        """Test 0-2 covers Sunday, Monday and Tuesday."""
        trigger = scheduler_module.parse_cron_expression('0 2 * * 0-2')
        fire = trigger.get_next_fire_time(None, datetime(2026, 10, 21, tzinfo=timezone.utc))

        assert fire.strftime('%A') == 'Sunday'

    def test_step(self):
        """Test */3 fires on Sunday, Wednesday and Saturday."""
        assert self._next_fire('0 2 * * */3').strftime('%A') == 'Wednesday'

    def test_names_unchanged(self):
        assert self._next_fire('0 2 * * sun').strftime('%A') == 'Sunday'

    @pytest.mark.parametrize("field,expected", [
        ('*', '*'),
        ('0', 'sun'),
        ('7', 'sun'),
        ('1-5', 'mon,tue,wed,thu,fri'),
        ('0,7', 'sun'),
        ('5-7', 'fri,sat,sun'),
        ('*/2', 'sun,tue,thu,sat'),
        ('1/3', 'mon,thu,sun'),
        ('mon-fri', 'mon-fri'),
        ('sat,0', 'sat,sun'),
    ])
    def test_translate(self, field, expected):
        assert scheduler_module.translate_day_of_week(field) == expected

    @pytest.mark.parametrize("expression", ['0 2 * * 8', '0 2 * * 5-1', '0 2 * * 1-9', '0 2 * * */0'])
    def test_invalid(self, expression):
        with pytest.raises(ConfigurationError, match="Invalid cron expression"):
            scheduler_module.parse_cron_expression(expression)


class TestSchedulerInitialization:
    """Test scheduler initialization."""

    @patch('dbbackup.scheduler.BlockingScheduler')
    def test_init_scheduler(self, mock_scheduler_class):
        """Test scheduler initialization."""
        mock_scheduler = MagicMock()
        mock_scheduler_class.return_value = mock_scheduler

        result = scheduler_module.init_scheduler()

        assert result == mock_scheduler
        assert scheduler_module.scheduler == mock_scheduler

        call_kwargs = mock_scheduler_class.call_args[1]
        assert 'executors' in call_kwargs
        assert call_kwargs['job_defaults']['max_instances'] == 1
        assert call_kwargs['job_defaults']['coalesce'] is True
        assert call_kwargs['timezone'] == 'UTC'

    @patch('dbbackup.scheduler.BlockingScheduler')
    def test_init_scheduler_only_once(self, mock_scheduler_class):
        """Test scheduler is only initialized once."""
        mock_scheduler_class.return_value = MagicMock()

        result1 = scheduler_module.init_scheduler()
        result2 = scheduler_module.init_scheduler()

        assert result1 == result2
        mock_scheduler_class.assert_called_once()


class TestSchedulerLifecycle:
    """Test scheduler start/stop operations."""

    def setup_method(self):
        """Set up before each test."""
        self.mock_scheduler = MagicMock()
        self.mock_scheduler.running = False
        self.mock_scheduler.state = 0
        scheduler_module.scheduler = self.mock_scheduler

    def teardown_method(self):
        """Clean up after each test."""
        scheduler_module.scheduler = None

    def test_start_scheduler(self):
        """Test starting the scheduler."""
        self.mock_scheduler.get_jobs.return_value = []

        scheduler_module.start_scheduler()

        self.mock_scheduler.start.assert_called_once()

    def test_start_scheduler_not_initialized(self):
        """Test starting scheduler before initialization raises error."""
        scheduler_module.scheduler = None

        with pytest.raises(RuntimeError, match="not initialized"):
            scheduler_module.start_scheduler()

    def test_start_scheduler_already_running(self):
        """Test starting scheduler when already running."""
        self.mock_scheduler.running = True

        scheduler_module.start_scheduler()

        self.mock_scheduler.start.assert_not_called()

    def test_stop_scheduler(self):
        """Test stopping the scheduler."""
        self.mock_scheduler.running = True

        scheduler_module.stop_scheduler()

        self.mock_scheduler.shutdown.assert_called_once_with(wait=False)

    def test_stop_scheduler_not_running(self):
        """Test stopping scheduler when not running."""
        scheduler_module.stop_scheduler()

        self.mock_scheduler.shutdown.assert_not_called()


class TestScheduleBackup:
    """Test schedule_backup."""

    def test_invalid_cron_creates_nothing(self, config, backup_request):
        """Test an invalid expression never initializes the scheduler."""
        with pytest.raises(ConfigurationError):
            scheduler_module.schedule_backup(ScheduleRequest('invalid cron', backup_request), config)

        assert scheduler_module.scheduler is None

    def test_adds_job(self, config, backup_request):
        """Test a valid expression registers one job with the request and config."""
        job_id = scheduler_module.schedule_backup(
            ScheduleRequest('0 2 * * *', backup_request), config
        )

        assert isinstance(scheduler_module.scheduler, BlockingScheduler)
        jobs = scheduler_module.scheduler.get_jobs()
        assert len(jobs) == 1
        assert jobs[0].id == job_id == 'backup_mysql_1'
        assert jobs[0].args == (backup_request, config)
        assert isinstance(jobs[0].trigger, CronTrigger)

    def test_multiple_expressions(self, config, backup_request):
        first = scheduler_module.schedule_backup(ScheduleRequest('0 2 * * *', backup_request), config)
        second = scheduler_module.schedule_backup(ScheduleRequest('0 14 * * *', backup_request), config)

        assert first != second
        assert len(scheduler_module.scheduler.get_jobs()) == 2

    def test_get_scheduled_jobs(self, config, backup_request):
        scheduler_module.schedule_backup(ScheduleRequest('*/5 * * * *', backup_request), config)

        jobs = scheduler_module.get_scheduled_jobs()

        assert len(jobs) == 1
        assert jobs[0]['id'] == 'backup_mysql_1'
        assert jobs[0]['name'] == 'Backup: mysql'
        assert 'cron' in jobs[0]['trigger']

    def test_get_scheduled_jobs_not_initialized(self):
        assert scheduler_module.get_scheduled_jobs() == []


class TestExecuteBackupWrapper:
    """Test _execute_backup_wrapper."""

    @patch('dbbackup.scheduler.execute_backup')
    def test_execute_backup_wrapper_success(self, mock_execute, config, backup_request):
        mock_execute.return_value = MagicMock(status='success')

        scheduler_module._execute_backup_wrapper(backup_request, config)

        mock_execute.assert_called_once_with(backup_request, config)

    @patch('dbbackup.scheduler.execute_backup')
    def test_execute_backup_wrapper_swallows_errors(self, mock_execute, config, backup_request):
        """Test an unexpected error never reaches the scheduler."""
        mock_execute.side_effect = RuntimeError('boom')

        scheduler_module._execute_backup_wrapper(backup_request, config)

        mock_execute.assert_called_once()
